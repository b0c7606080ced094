"""
Gateway errors and retry classification.

yt-dlp reports every failure as free text, so permanent conditions are
detected by substring match on the message.
"""

# Conditions that will not change on retry
NON_RETRYABLE_ERRORS = [
    'Invalid video URL',
    'Video not available',
    'Private video',
    'Age-restricted video',
    'Copyright restricted',
    # yt-dlp phrasing of the same conditions
    'Video unavailable',
    'Sign in to confirm your age',
    'copyright claim',
    'Unsupported URL',
]


class GatewayError(Exception):
    """yt-dlp failed to extract or download"""

    def __init__(self, message, stderr=''):
        super().__init__(message)
        self.stderr = stderr


class GatewayTimeout(GatewayError):
    """yt-dlp ran past the hard timeout and was killed"""


class PlaylistNotSupported(GatewayError):
    """URL resolves to a playlist instead of a single video"""


def is_retryable(message):
    """
    Decide whether a failure message describes a transient condition.

    Args:
        message: Error text from the gateway

    Returns:
        bool: False if the message names a permanent condition
    """
    text = (message or '').lower()
    for marker in NON_RETRYABLE_ERRORS:
        if marker.lower() in text:
            return False
    return True
