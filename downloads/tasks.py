import logging
from datetime import timedelta

from django.utils import timezone
from huey.contrib.djhuey import HUEY, db_task
from huey.exceptions import TaskLockedException

from downloads.models import DownloadJob, InvalidTransition
from downloads.operations import DownloadRejected, attempt_download, job_logger
from downloads.service.config import get_max_attempts, get_retry_delay
from downloads.service.errors import is_retryable

logger = logging.getLogger(__name__)


@db_task()
def process_download(job_id, attempt=1):
    """
    Background processing task for a queued download.

    Steps:
    1. Skip jobs that are gone, already terminal, or past this attempt
    2. Take the per-job lock so duplicate deliveries cannot run together
    3. Run the gateway once
    4. Complete, fail, or schedule the next attempt with backoff

    Deliveries are at-least-once, so every step is safe to repeat.

    Returns:
        str: The job status after this delivery, None if the job is gone
    """
    try:
        job = DownloadJob.objects.get(pk=job_id)
    except DownloadJob.DoesNotExist:
        logger.warning('Download #%s no longer exists, skipping', job_id)
        return None

    if job.is_terminal:
        return job.status

    try:
        with HUEY.lock_task(f'download-job-{job_id}'):
            return _run_attempt(job, attempt)
    except TaskLockedException:
        logger.info('Download #%s is already being processed, dropping delivery', job_id)
        return job.status


def _is_stale(job, attempt):
    """
    True if this delivery has nothing left to do.

    A delivery of the attempt already recorded is only stale once its
    retry has been scheduled; otherwise the worker running it died and
    the attempt is run again.
    """
    if job.is_terminal or attempt < job.attempts:
        return True
    return attempt == job.attempts and job.next_retry_at is not None


def _run_attempt(job, attempt):
    # Re-read under the lock; another worker may have finished the job
    job.refresh_from_db()
    if _is_stale(job, attempt):
        return job.status
    if attempt == job.attempts:
        logger.warning('Download #%s attempt %s was interrupted, running it again', job.pk, attempt)

    log = job_logger(job)
    max_attempts = get_max_attempts()

    try:
        job.mark_processing(attempt=attempt)
    except InvalidTransition:
        return job.status

    log(f'=== ATTEMPT {attempt}/{max_attempts} ===')
    log(f'URL: {job.source_url}')
    log(f'Format: {job.format} Quality: {job.quality}')

    try:
        info = attempt_download(job, log=log)
    except DownloadRejected as e:
        job.mark_failed(str(e))
        log(f'=== FAILED === {e}')
        logger.info('Download #%s rejected: %s', job.pk, e)
        return job.status
    except Exception as e:
        message = str(e) or 'Download failed'
        log(f'Error: {message}')
        return _handle_failure(job, attempt, max_attempts, message, log)

    job.mark_completed(info.path, info.file_size)
    log('=== COMPLETED ===')
    log(f'{info.path} ({info.file_size} bytes)')
    logger.info('Download #%s completed on attempt %s', job.pk, attempt)
    return job.status


def _handle_failure(job, attempt, max_attempts, message, log):
    if not is_retryable(message):
        job.mark_failed(message)
        log('=== FAILED (not retryable) ===')
        logger.warning('Download #%s failed permanently: %s', job.pk, message)
        return job.status

    if attempt >= max_attempts:
        job.mark_failed(message)
        log(f'=== FAILED after {attempt} attempts ===')
        logger.warning('Download #%s failed after %s attempts: %s', job.pk, attempt, message)
        return job.status

    delay = get_retry_delay(attempt)
    DownloadJob.objects.filter(pk=job.pk).update(
        next_retry_at=timezone.now() + timedelta(seconds=delay)
    )
    process_download.schedule((job.pk, attempt + 1), delay=delay)
    log(f'Retrying in {delay} seconds')
    logger.info('Download #%s attempt %s failed, retrying in %ss: %s', job.pk, attempt, delay, message)
    return job.status
