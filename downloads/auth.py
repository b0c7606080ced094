"""
API key admission.

Checks run in a fixed order and the first failure wins:
key present -> key known -> key valid -> IP allowed -> rate limit ->
format allowed (only when the request names a format).
"""

import functools
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from django.http import JsonResponse

from downloads.models import ApiKey
from downloads.ratelimit import RateLimiter
from downloads.utils import get_client_ip

logger = logging.getLogger(__name__)

UNAUTHORIZED = 'UNAUTHORIZED'
INVALID_API_KEY = 'INVALID_API_KEY'
API_KEY_INACTIVE = 'API_KEY_INACTIVE'
IP_NOT_ALLOWED = 'IP_NOT_ALLOWED'
RATE_LIMIT_EXCEEDED = 'RATE_LIMIT_EXCEEDED'
FORMAT_NOT_ALLOWED = 'FORMAT_NOT_ALLOWED'


@dataclass
class Admission:
    """Result of the admission checks"""

    ok: bool
    api_key: Optional[ApiKey] = None
    code: str = ''
    message: str = ''
    status: int = 200
    extra: dict = field(default_factory=dict)

    @classmethod
    def deny(cls, code, message, status, api_key=None, **extra):
        return cls(ok=False, api_key=api_key, code=code, message=message, status=status, extra=extra)

    def to_response(self):
        error = {'code': self.code, 'message': self.message, **self.extra}
        return JsonResponse({'success': False, 'error': error}, status=self.status)


def extract_api_key(request):
    """
    Find the API key on a request.

    Checked in order: 'Authorization: Bearer <key>', 'X-API-Key' header,
    'api_key' query or form parameter. The first one present wins.
    """
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[len('Bearer '):].strip() or None

    header_key = request.headers.get('X-API-Key')
    if header_key:
        return header_key

    return request.GET.get('api_key') or request.POST.get('api_key') or None


def get_requested_format(request):
    """The 'format' parameter from query, form or JSON body, if any"""
    fmt = request.GET.get('format') or request.POST.get('format')
    if fmt:
        return fmt

    if request.content_type == 'application/json' and request.body:
        try:
            payload = json.loads(request.body)
        except ValueError:
            return None
        if isinstance(payload, dict) and payload.get('format'):
            return str(payload['format'])
    return None


def admit(request, requested_format=None, limiter=None):
    """
    Run the admission checks for a request.

    Args:
        request: Django HttpRequest
        requested_format: Format named by the request, if any
        limiter: RateLimiter to use (default: settings cache)

    Returns:
        Admission
    """
    key = extract_api_key(request)
    if not key:
        return Admission.deny(
            UNAUTHORIZED,
            'API key is required. Please provide a valid API key in the Authorization '
            'header or as api_key parameter.',
            401,
        )

    api_key = ApiKey.objects.validate(key)
    if api_key is None:
        return Admission.deny(INVALID_API_KEY, 'Invalid API key.', 401)

    if not api_key.is_valid():
        return Admission.deny(API_KEY_INACTIVE, 'API key is inactive or expired.', 401, api_key)

    if not api_key.is_ip_allowed(get_client_ip(request)):
        return Admission.deny(IP_NOT_ALLOWED, 'Access denied from this IP address.', 403, api_key)

    limiter = limiter or RateLimiter()
    result = limiter.check_and_increment(api_key)
    if not result.admitted:
        return Admission.deny(
            RATE_LIMIT_EXCEEDED,
            f'Rate limit exceeded for: {", ".join(result.exceeded)}',
            429,
            api_key,
            exceeded=result.exceeded,
            rate_limits=result.usage,
        )

    if requested_format and not api_key.is_format_allowed(requested_format):
        limiter.release(api_key)
        return Admission.deny(
            FORMAT_NOT_ALLOWED,
            'This API key is not authorized to download in the requested format.',
            403,
            api_key,
        )

    try:
        api_key.record_usage()
    except Exception:
        logger.exception('Failed to record usage for key %s', api_key.key_prefix)

    return Admission(ok=True, api_key=api_key)


def require_api_key(view_func):
    """
    View decorator running the admission checks.

    Sets request.api_key on success, otherwise returns the denial as JSON.
    """

    @functools.wraps(view_func)
    def wrapper(request, *args, **kwargs):
        admission = admit(request, requested_format=get_requested_format(request))
        if not admission.ok:
            return admission.to_response()
        request.api_key = admission.api_key
        return view_func(request, *args, **kwargs)

    return wrapper
