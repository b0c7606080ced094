import re
from datetime import datetime
from pathlib import Path

from downloads.service.config import get_format_extension

YOUTUBE_URL_RE = re.compile(
    r'^(https?://)?(www\.|m\.)?'
    r'(youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/v/)'
    r'[a-zA-Z0-9_-]{11}([&?].*)?$'
)

VIDEO_ID_RE = re.compile(
    r'(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/v/)([a-zA-Z0-9_-]{11})'
)


def validate_url(url):
    """True if the URL points at a single YouTube video"""
    return bool(url) and YOUTUBE_URL_RE.match(url) is not None


def extract_video_id(url):
    """Get the 11 character video id from a YouTube URL, or None"""
    if not url:
        return None
    match = VIDEO_ID_RE.search(url)
    return match.group(1) if match else None


def normalize_url(url):
    """
    Rewrite watch and short URLs to the canonical watch URL.

    Extra query parameters (playlists, timestamps) are dropped.
    """
    if not url:
        return url
    url = url.strip()

    if 'youtube.com/watch' in url:
        match = re.search(r'[?&]v=([^&]+)', url)
        if match:
            return f'https://www.youtube.com/watch?v={match.group(1)}'
    elif 'youtu.be/' in url:
        match = re.search(r'youtu\.be/([^?&]+)', url)
        if match:
            return f'https://www.youtube.com/watch?v={match.group(1)}'

    return url


def sanitize_filename(filename, max_chars=100):
    """
    Make a title safe for use as a file name.

    Characters outside [A-Za-z0-9._-] become underscores, runs of
    underscores collapse, and the result is trimmed and truncated.

    Args:
        filename: Text to sanitize
        max_chars: Maximum length of the result

    Returns:
        str: Sanitized name, 'video' if nothing is left
    """
    name = re.sub(r'[^a-zA-Z0-9._-]', '_', filename or '')
    name = re.sub(r'_+', '_', name)
    name = name.strip('_')
    return name[:max_chars] or 'video'


def build_output_filename(job):
    """
    Build the stored file name for a download.

    '<job id>_<video id>_<title>.<ext>' is unique per job so concurrent
    downloads of the same video never share a file.
    """
    ext = get_format_extension(job.format)
    safe_title = sanitize_filename(job.title or 'video')
    return f'{job.pk}_{job.video_id}_{safe_title}.{ext}'


def build_download_name(title, output_path):
    """Human readable attachment name: '<sanitized title>.<original ext>'"""
    safe_title = sanitize_filename(title or 'video')
    return f'{safe_title}{Path(output_path).suffix}'


def get_client_ip(request):
    return request.META.get('REMOTE_ADDR') or '0.0.0.0'


def write_log(log_path, message):
    """Append message to log file"""
    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, 'a') as f:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
            f.write(f'[{timestamp}] {message}\n')
