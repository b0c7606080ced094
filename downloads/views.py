import json
import logging
from datetime import timedelta
from pathlib import Path

from django.core.paginator import Paginator
from django.db.models import Count
from django.http import FileResponse, JsonResponse
from django.urls import reverse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from downloads.auth import require_api_key
from downloads.forms import DownloadRequestForm, HistoryFilterForm, VideoLookupForm
from downloads.models import DownloadJob
from downloads.operations import (
    DownloadFailed,
    DownloadRejected,
    enqueue_download,
    run_download,
    submit_download,
)
from downloads.service import gateway
from downloads.service.constants import FORMATS, QUALITIES
from downloads.service.errors import GatewayError
from downloads.utils import build_download_name, get_client_ip

logger = logging.getLogger(__name__)

API_VERSION = '1.0.0'


def _error(code, message, status, **extra):
    return JsonResponse(
        {'success': False, 'error': {'code': code, 'message': message, **extra}}, status=status
    )


def _ok(data, status=200):
    return JsonResponse({'success': True, 'data': data}, status=status)


def _request_data(request):
    """Request parameters from a JSON body, form body, or query string"""
    if request.content_type == 'application/json':
        try:
            payload = json.loads(request.body or b'{}')
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}
    if request.method == 'POST':
        return request.POST
    return request.GET


def _validation_error(form):
    return _error(
        'VALIDATION_ERROR',
        'The given data was invalid.',
        400,
        fields={field: [str(e) for e in errors] for field, errors in form.errors.items()},
    )


def _isoformat(value):
    return value.isoformat() if value else None


def _video_payload(job):
    return {
        'id': job.video_id,
        'title': job.title,
        'thumbnail': job.thumbnail or None,
        'duration': job.formatted_duration,
    }


def _file_url(request, job):
    return request.build_absolute_uri(reverse('download_file', args=[job.pk]))


def _status_payload(request, job):
    data = {
        'download_id': job.pk,
        'status': job.status,
        'video': _video_payload(job),
        'format': job.format,
        'quality': job.quality,
        'attempts': job.attempts,
        'created_at': _isoformat(job.created_at),
        'started_at': _isoformat(job.started_at),
        'completed_at': _isoformat(job.completed_at),
    }
    if job.next_retry_at:
        data['next_retry_at'] = _isoformat(job.next_retry_at)
    if job.is_completed:
        data['file'] = {
            'size': job.formatted_file_size,
            'download_url': _file_url(request, job),
        }
    if job.is_failed:
        data['error_message'] = job.error_message
    return data


def _history_item(job):
    return {
        'download_id': job.pk,
        'status': job.status,
        'video': _video_payload(job),
        'format': job.format,
        'quality': job.quality,
        'file_size': job.formatted_file_size,
        'error_message': job.error_message,
        'created_at': _isoformat(job.created_at),
        'completed_at': _isoformat(job.completed_at),
    }


@require_http_methods(['GET'])
def health_view(request):
    """Unauthenticated liveness check"""
    return JsonResponse(
        {
            'success': True,
            'message': 'TubeGate API is running',
            'version': API_VERSION,
            'timestamp': timezone.now().isoformat(),
        }
    )


@csrf_exempt
@require_http_methods(['POST'])
@require_api_key
def video_info_view(request):
    """
    Metadata for a video plus the formats and qualities the API offers.

    Params:
        url (required): YouTube video URL
    """
    form = VideoLookupForm(_request_data(request))
    if not form.is_valid():
        if form.has_error('url', 'invalid_url'):
            return _error('INVALID_URL', 'Invalid YouTube URL provided.', 400)
        return _validation_error(form)

    url = form.cleaned_data['url']
    try:
        metadata = gateway.fetch_metadata(url)
    except GatewayError as e:
        logger.error('Failed to get video info for %s: %s', url, e)
        return _error('VIDEO_INFO_ERROR', str(e), 400)

    return _ok(
        {
            'video': metadata.to_dict(),
            'supported_formats': FORMATS,
            'supported_qualities': QUALITIES,
        }
    )


@csrf_exempt
@require_http_methods(['POST'])
@require_api_key
def video_qualities_view(request):
    """
    Qualities a video offers in one format.

    Params:
        url (required): YouTube video URL
        format (required): mp4|mp3|webm|avi
    """
    form = VideoLookupForm(_request_data(request))
    form.fields['format'].required = True
    if not form.is_valid():
        if form.has_error('url', 'invalid_url'):
            return _error('INVALID_URL', 'Invalid YouTube URL provided.', 400)
        return _validation_error(form)

    url = form.cleaned_data['url']
    fmt = form.cleaned_data['format']
    qualities = gateway.available_qualities(
        url, fmt, logger=lambda message: logger.info('%s', message)
    )
    return _ok({'format': fmt, 'available_qualities': qualities})


@csrf_exempt
@require_http_methods(['POST'])
@require_api_key
def download_view(request):
    """
    Submit a download.

    Params:
        url (required): YouTube video URL
        format (required): mp4|mp3|webm|avi
        quality (optional): 144p..2160p, video formats only (default 720p)
        async (optional): Queue the job (default true) or run it inline

    Returns:
        202 with the queued job, 200 with the finished job, 400 on
        validation errors or a failed synchronous download
    """
    ip_address = get_client_ip(request)
    form = DownloadRequestForm(_request_data(request), ip_address=ip_address)
    if not form.is_valid():
        return _validation_error(form)

    data = form.cleaned_data

    # Queued jobs are looked up by the worker
    metadata = None
    if not data['async']:
        try:
            metadata = gateway.fetch_metadata(data['url'])
        except GatewayError as e:
            logger.error('Download request failed for %s: %s', data['url'], e)
            return _error('VIDEO_INFO_ERROR', str(e), 400)

    try:
        job = submit_download(
            data,
            ip_address=ip_address,
            user_agent=request.headers.get('User-Agent', ''),
            api_key=getattr(request, 'api_key', None),
            metadata=metadata,
        )
    except DownloadRejected as e:
        return _error('VIDEO_TOO_LONG', str(e), 400)

    if data['async']:
        enqueue_download(job)
        return _ok(
            {
                'download_id': job.pk,
                'status': job.status,
                'message': 'Download request queued. Use the download_id to check status.',
                'video': _video_payload(job),
                'check_status_url': request.build_absolute_uri(
                    reverse('download_status', args=[job.pk])
                ),
            },
            status=202,
        )

    try:
        run_download(job)
    except DownloadFailed as e:
        return _error('DOWNLOAD_ERROR', f'Download failed: {e}', 400, download_id=job.pk)

    return _ok(
        {
            'download_id': job.pk,
            'status': job.status,
            'video': _video_payload(job),
            'file': {
                'size': job.formatted_file_size,
                'format': job.format,
                'quality': job.quality,
            },
            'download_url': _file_url(request, job),
        }
    )


@require_http_methods(['GET'])
@require_api_key
def download_status_view(request, job_id):
    job = DownloadJob.objects.filter(pk=job_id).first()
    if job is None:
        return _error('DOWNLOAD_NOT_FOUND', 'Download not found.', 404)
    return _ok(_status_payload(request, job))


@require_http_methods(['GET'])
@require_api_key
def download_file_view(request, job_id):
    """Stream a completed download as an attachment named after its title"""
    job = DownloadJob.objects.filter(pk=job_id).first()
    if job is None:
        return _error('DOWNLOAD_NOT_FOUND', 'Download not found.', 404)

    if not job.is_completed:
        return _error(
            'DOWNLOAD_NOT_READY',
            f'Download is not completed yet. Current status: {job.status}',
            400,
        )

    path = Path(job.outcome.output_path)
    if not path.is_file():
        return _error('FILE_NOT_FOUND', 'Download file not found on server.', 404)

    return FileResponse(
        open(path, 'rb'),
        as_attachment=True,
        filename=build_download_name(job.title, path),
    )


@require_http_methods(['GET'])
@require_api_key
def history_view(request):
    """
    Downloads requested from the caller's IP, newest first.

    Params:
        page (optional): Page number, default 1
        per_page (optional): 1-100, default 20
        status (optional): pending|processing|completed|failed
    """
    form = HistoryFilterForm(request.GET)
    if not form.is_valid():
        return _validation_error(form)

    jobs = DownloadJob.objects.filter(ip_address=get_client_ip(request)).order_by('-created_at')
    if form.cleaned_data.get('status'):
        jobs = jobs.by_status(form.cleaned_data['status'])

    paginator = Paginator(jobs, form.cleaned_data.get('per_page') or 20)
    page = paginator.get_page(form.cleaned_data.get('page') or 1)

    return _ok(
        {
            'downloads': [_history_item(job) for job in page.object_list],
            'pagination': {
                'current_page': page.number,
                'per_page': paginator.per_page,
                'total': paginator.count,
                'last_page': paginator.num_pages,
            },
        }
    )


@require_http_methods(['GET'])
@require_api_key
def system_status_view(request):
    """Job statistics and yt-dlp availability"""
    now = timezone.now()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = today - timedelta(days=today.weekday())

    by_status = {status: 0 for status, _label in DownloadJob.STATUS_CHOICES}
    for row in DownloadJob.objects.values('status').annotate(count=Count('id')).order_by():
        by_status[row['status']] = row['count']

    by_format = {
        row['format']: row['count']
        for row in DownloadJob.objects.values('format').annotate(count=Count('id')).order_by()
    }

    version = gateway.yt_dlp_version()

    return _ok(
        {
            'statistics': {
                'total_downloads': DownloadJob.objects.count(),
                'downloads_today': DownloadJob.objects.filter(created_at__gte=today).count(),
                'downloads_this_week': DownloadJob.objects.filter(created_at__gte=week_start).count(),
                'downloads_by_status': by_status,
                'downloads_by_format': by_format,
            },
            'system': {
                'yt_dlp_available': version is not None,
                'yt_dlp_version': version,
                'supported_formats': FORMATS,
                'supported_qualities': QUALITIES,
            },
        }
    )
