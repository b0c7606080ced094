"""
Configuration adapter for download settings.

Centralizes access to Django settings and environment variables,
ensuring consistent configuration across the API, tasks and commands.
"""

from pathlib import Path

from django.conf import settings

from downloads.service.constants import FORMAT_EXTENSIONS


def get_yt_dlp_path():
    """Get the yt-dlp binary path or invocation name"""
    return settings.TUBEGATE_YT_DLP_PATH


def get_download_dir():
    """
    Get the managed output directory, creating it if needed.

    Returns:
        Path: Absolute download directory
    """
    download_dir = Path(settings.TUBEGATE_DOWNLOAD_DIR)
    download_dir.mkdir(parents=True, exist_ok=True)
    return download_dir


def get_log_dir():
    """Directory holding per-job log files"""
    log_dir = get_download_dir() / 'logs'
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def get_default_rate_limits():
    """
    Get the default per-key rate limits.

    Returns:
        dict: {'minute': int, 'hour': int, 'day': int}
    """
    return {
        'minute': settings.TUBEGATE_RATE_LIMIT_MINUTE,
        'hour': settings.TUBEGATE_RATE_LIMIT_HOUR,
        'day': settings.TUBEGATE_RATE_LIMIT_DAY,
    }


def get_max_attempts():
    """Maximum gateway attempts for a queued download"""
    return max(1, int(settings.TUBEGATE_MAX_ATTEMPTS))


def get_retry_backoff():
    """Delay table in seconds, one entry per retry"""
    return list(settings.TUBEGATE_RETRY_BACKOFF)


def get_retry_delay(attempt):
    """
    Get the delay before the retry that follows a failed attempt.

    Attempt numbers start at 1. Past the end of the table the last
    entry is reused.

    Args:
        attempt: Number of the attempt that just failed

    Returns:
        int: Seconds to wait
    """
    backoff = get_retry_backoff()
    if not backoff:
        return 0
    index = min(max(attempt, 1), len(backoff)) - 1
    return backoff[index]


def get_job_timeout():
    """Hard wall-clock limit for one yt-dlp run, in seconds"""
    return settings.TUBEGATE_JOB_TIMEOUT


def get_dedupe_window():
    """Seconds within which a repeated request is rejected"""
    return settings.TUBEGATE_DEDUPE_WINDOW


def get_cleanup_days():
    return settings.TUBEGATE_CLEANUP_DAYS


def get_format_extension(fmt):
    """
    Get the file extension for a download format.

    Raises:
        ValueError: If the format is not supported
    """
    try:
        return FORMAT_EXTENSIONS[fmt]
    except KeyError:
        raise ValueError(f'Unsupported format: {fmt}')


def get_max_file_size():
    """Largest file yt-dlp may write, in bytes; 0 disables the limit"""
    return settings.TUBEGATE_MAX_FILE_SIZE


def get_max_duration():
    """Longest video accepted for download, in seconds; 0 disables the limit"""
    return settings.TUBEGATE_MAX_DURATION
