"""
High-level download operations used by views, tasks and management commands.

Keeps the job lifecycle in one place so the HTTP layer and the queue
worker drive the gateway the same way.
"""

import logging
import time

from downloads.models import DownloadJob
from downloads.service import gateway
from downloads.service.config import (
    get_download_dir,
    get_job_timeout,
    get_log_dir,
    get_max_duration,
)
from downloads.utils import build_output_filename, write_log

logger = logging.getLogger(__name__)


class DownloadRejected(Exception):
    """The video exists but falls outside the configured limits"""


class DownloadFailed(Exception):
    """A synchronous download ended in the failed state"""

    def __init__(self, job, message):
        super().__init__(message)
        self.job = job


def get_job_log_path(job):
    return get_log_dir() / f'job-{job.pk}.log'


def job_logger(job):
    """Callable(message) writing to the job's log file and the module logger"""
    log_path = get_job_log_path(job)

    def log(message):
        logger.debug('Download #%s: %s', job.pk, message)
        try:
            write_log(log_path, message)
        except OSError as e:
            # The job log is a convenience copy; the module logger has the message
            logger.warning('Could not write job log %s: %s', log_path, e)

    return log


def check_duration(metadata):
    """
    Raises:
        DownloadRejected: If the video is longer than the configured maximum
    """
    max_duration = get_max_duration()
    if max_duration and metadata.duration_seconds > max_duration:
        raise DownloadRejected(
            f'Video is {metadata.duration_seconds} seconds long; '
            f'the maximum is {max_duration} seconds.'
        )


def submit_download(cleaned_data, ip_address, user_agent='', api_key=None, metadata=None):
    """
    Create a pending job for a validated request.

    Nothing is fetched here. When the caller already looked the video up
    (the synchronous track does), the metadata is stored on the job;
    otherwise the worker loads it before downloading.

    Args:
        cleaned_data: DownloadRequestForm.cleaned_data
        ip_address: Requesting client address
        user_agent: Requesting client user agent
        api_key: ApiKey that admitted the request
        metadata: Optional VideoMetadata already fetched for the URL

    Returns:
        DownloadJob

    Raises:
        DownloadRejected: If the given metadata is over the duration limit
    """
    if metadata is not None:
        check_duration(metadata)

    job = DownloadJob(
        source_url=cleaned_data['url'],
        video_id=cleaned_data['video_id'],
        format=cleaned_data['format'],
        quality=cleaned_data.get('quality'),
        ip_address=ip_address,
        user_agent=(user_agent or '')[:500],
        api_key=api_key,
    )
    if metadata is not None:
        _apply_metadata(job, metadata)
    job.full_clean()
    job.save()

    logger.info(
        'Download request created: job=%s video=%s format=%s',
        job.pk,
        job.video_id,
        job.format,
    )
    return job


def _apply_metadata(job, metadata):
    job.title = (metadata.title or 'Unknown')[:500]
    job.thumbnail = metadata.thumbnail or ''
    job.duration_seconds = metadata.duration_seconds or None


def load_metadata(job, log=None):
    """
    Fetch and store title, thumbnail and duration for a job.

    Returns:
        VideoMetadata

    Raises:
        GatewayError: If metadata cannot be fetched
        DownloadRejected: If the video is longer than the configured maximum
    """
    metadata = gateway.fetch_metadata(job.source_url, logger=log)
    check_duration(metadata)

    _apply_metadata(job, metadata)
    DownloadJob.objects.filter(pk=job.pk).update(
        title=job.title,
        thumbnail=job.thumbnail,
        duration_seconds=job.duration_seconds,
    )
    return metadata


def attempt_download(job, log=None):
    """
    Run the gateway once for a job that is already processing.

    Jobs queued without metadata get it looked up first, since the
    output file name is built from the title.

    Args:
        job: DownloadJob in processing
        log: Optional callable(str) for logging

    Returns:
        DownloadedFileInfo

    Raises:
        GatewayError: If the lookup or download failed
        DownloadRejected: If the video is over the duration limit
    """
    if not job.title:
        load_metadata(job, log=log)

    output_path = get_download_dir() / build_output_filename(job)
    return gateway.fetch_media(
        job.source_url,
        job.format,
        job.quality,
        output_path,
        logger=log,
        timeout=get_job_timeout(),
    )


def run_download(job):
    """
    Process a job synchronously with a single attempt.

    Returns:
        DownloadJob: The completed job

    Raises:
        DownloadFailed: If the attempt failed for any reason; the job is left failed
    """
    log = job_logger(job)
    job.mark_processing(attempt=job.attempts + 1)

    try:
        log('=== DOWNLOADING (sync) ===')
        info = attempt_download(job, log=log)
    except Exception as e:
        message = str(e) or 'Download failed'
        job.mark_failed(message)
        log(f'Error: {message}')
        logger.warning('Download #%s failed: %s', job.pk, message)
        raise DownloadFailed(job, message)

    job.mark_completed(info.path, info.file_size)
    log(f'=== COMPLETED === {info.path} ({info.file_size} bytes)')
    logger.info('Download #%s completed: %s bytes', job.pk, info.file_size)
    return job


def cleanup_old_files(days, logger=None):
    """
    Delete files in the download directory older than the given age.

    Only top-level files are considered, so the job log directory is
    left alone.

    Returns:
        int: Number of files deleted
    """

    def log(message):
        if logger:
            logger(message)

    cutoff = time.time() - days * 24 * 60 * 60
    cleaned = 0
    for path in get_download_dir().iterdir():
        if path.is_file() and path.stat().st_mtime < cutoff:
            path.unlink()
            cleaned += 1
            log(f'Removed old file: {path}')
    return cleaned


def enqueue_download(job):
    """
    Hand an unfinished job to the background queue.

    A pending job starts at attempt 1; a job whose worker died resumes
    at the attempt it had reached.
    """
    from downloads.tasks import process_download

    attempt = max(job.attempts, 1)
    process_download(job.pk, attempt)
    logger.info('Download #%s queued (attempt %s)', job.pk, attempt)
    return job
