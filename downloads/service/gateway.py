"""
yt-dlp gateway.

Metadata comes from the yt_dlp library; media downloads run the yt-dlp
binary in a subprocess so a hard timeout can kill it.
"""

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yt_dlp
from yt_dlp.utils import DownloadError

from downloads.service.config import (
    get_format_extension,
    get_job_timeout,
    get_max_file_size,
    get_yt_dlp_path,
)
from downloads.service.constants import AUDIO_FORMATS, FORMAT_MP3
from downloads.service.errors import GatewayError, GatewayTimeout, PlaylistNotSupported


@dataclass
class VideoMetadata:
    """Metadata for a single video, fetched without downloading"""

    source_id: str
    title: str = 'Unknown'
    thumbnail: Optional[str] = None
    duration_seconds: int = 0
    description: str = ''
    uploader: str = 'Unknown'
    upload_date: Optional[str] = None
    view_count: int = 0
    like_count: int = 0
    available_formats: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self):
        return {
            'id': self.source_id,
            'title': self.title,
            'description': self.description,
            'thumbnail': self.thumbnail,
            'duration': self.duration_seconds,
            'uploader': self.uploader,
            'upload_date': self.upload_date,
            'view_count': self.view_count,
            'like_count': self.like_count,
            'formats': self.available_formats,
        }


@dataclass
class DownloadedFileInfo:
    """Information about a downloaded file"""

    path: Path
    file_size: int
    extension: str


def fetch_metadata(url, logger=None):
    """
    Fetch video metadata without downloading the media file.

    Args:
        url: Video URL
        logger: Optional callable(str) for logging

    Returns:
        VideoMetadata

    Raises:
        PlaylistNotSupported: If the URL is a playlist
        GatewayError: If yt-dlp cannot extract the video
    """

    def log(message):
        if logger:
            logger(message)

    ydl_opts = {
        'quiet': True,
        'no_warnings': True,
        'extract_flat': False,
        'noplaylist': True,
    }

    try:
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(url, download=False)
    except DownloadError as e:
        raise GatewayError(f'Failed to extract video information: {e}')

    if not info:
        raise GatewayError('Invalid video information received')

    if 'entries' in info:
        raise PlaylistNotSupported('fetching playlist not supported')

    metadata = VideoMetadata(
        source_id=info.get('id') or '',
        title=info.get('title') or 'Unknown',
        thumbnail=info.get('thumbnail'),
        duration_seconds=int(info.get('duration') or 0),
        description=info.get('description') or '',
        uploader=info.get('uploader') or info.get('channel') or 'Unknown',
        upload_date=info.get('upload_date'),
        view_count=info.get('view_count') or 0,
        like_count=info.get('like_count') or 0,
        available_formats=extract_available_formats(info.get('formats', [])),
    )

    log(f'yt-dlp metadata extracted: {metadata.title}')
    log(f'Duration: {metadata.duration_seconds}s')

    return metadata


def extract_available_formats(formats):
    """
    Group the stream list by container.

    Args:
        formats: yt-dlp 'formats' list

    Returns:
        dict: ext -> list of qualities such as '720p'; mp3 is always present
    """
    available = {}

    for fmt in formats:
        ext = fmt.get('ext') or ''
        height = fmt.get('height')

        if ext in ('mp4', 'webm') and height:
            quality = f'{height}p'
            qualities = available.setdefault(ext, [])
            if quality not in qualities:
                qualities.append(quality)

    available[FORMAT_MP3] = ['audio']
    return available


def available_qualities(url, fmt, logger=None):
    """
    List the qualities a video offers in the given format, lowest first.

    Returns an empty list when metadata cannot be fetched.
    """
    try:
        metadata = fetch_metadata(url, logger=logger)
    except GatewayError as e:
        if logger:
            logger(f'Failed to get available qualities: {e}')
        return []

    qualities = metadata.available_formats.get(fmt, [])
    if fmt in AUDIO_FORMATS:
        return []
    return sorted(qualities, key=lambda q: int(q.rstrip('p')))


def build_format_selector(fmt, quality=None):
    """
    Build the yt-dlp --format selector for a video format.

    Args:
        fmt: 'mp4', 'webm', 'avi' or 'mp3'
        quality: Optional quality such as '720p'

    Returns:
        str: yt-dlp format selector
    """
    if fmt == FORMAT_MP3:
        return 'bestaudio[ext=m4a]/bestaudio/best'

    if quality:
        height = int(quality.rstrip('p'))
        return f'best[height<={height}][ext={fmt}]/best[ext={fmt}]/best'

    return f'best[ext={fmt}]/best'


def build_download_command(url, fmt, quality, output_path):
    """
    Build the yt-dlp argument list for a download.

    Audio extraction renames the file, so mp3 uses an %(ext)s template
    that resolves to the same final path.
    """
    output_path = Path(output_path)
    command = [
        get_yt_dlp_path(),
        '--no-check-certificate',
        '--no-playlist',
        '--no-progress',
    ]

    max_file_size = get_max_file_size()
    if max_file_size:
        command += ['--max-filesize', str(max_file_size)]

    if fmt == FORMAT_MP3:
        template = str(output_path.with_suffix('')) + '.%(ext)s'
        command += [
            '--output', template,
            '--extract-audio',
            '--audio-format', 'mp3',
            '--audio-quality', '192K',
        ]
    else:
        command += [
            '--output', str(output_path),
            '--format', build_format_selector(fmt, quality),
        ]

    command.append(url)
    return command


def fetch_media(url, fmt, quality, output_path, logger=None, timeout=None):
    """
    Download a video with the yt-dlp binary.

    Args:
        url: Video URL
        fmt: Download format ('mp4', 'mp3', 'webm', 'avi')
        quality: Quality such as '720p', None for audio
        output_path: Final file path (extension must match the format)
        logger: Optional callable(str) for logging
        timeout: Seconds before yt-dlp is killed (default from settings)

    Returns:
        DownloadedFileInfo

    Raises:
        GatewayTimeout: If yt-dlp ran past the timeout
        GatewayError: If yt-dlp failed or produced no file
    """

    def log(message):
        if logger:
            logger(message)

    output_path = Path(output_path)
    if output_path.suffix != f'.{get_format_extension(fmt)}':
        raise ValueError(f'Output path {output_path} does not match format {fmt}')
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if timeout is None:
        timeout = get_job_timeout()

    command = build_download_command(url, fmt, quality, output_path)
    log(f'Running: {" ".join(command)}')

    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        # subprocess.run kills the child before re-raising
        raise GatewayTimeout(f'Download timed out after {timeout} seconds')
    except OSError as e:
        raise GatewayError(f'Could not run yt-dlp: {e}')

    if result.returncode != 0:
        stderr = (result.stderr or '').strip()
        log(f'yt-dlp exited with {result.returncode}: {stderr}')
        raise GatewayError(stderr or f'yt-dlp exited with code {result.returncode}', stderr=stderr)

    if not output_path.exists():
        raise GatewayError('Download completed but file not found')

    file_size = output_path.stat().st_size
    log(f'Downloaded {file_size} bytes to {output_path}')

    return DownloadedFileInfo(path=output_path, file_size=file_size, extension=output_path.suffix)


def yt_dlp_version():
    """Get the version string of the configured yt-dlp binary, or None"""
    try:
        result = subprocess.run(
            [get_yt_dlp_path(), '--version'], capture_output=True, text=True, timeout=10
        )
    except (OSError, subprocess.TimeoutExpired):
        return None

    if result.returncode != 0:
        return None
    return result.stdout.strip()
