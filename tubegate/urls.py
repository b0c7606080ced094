"""
URL configuration for tubegate project.

The JSON API lives under /api/v1/, with unversioned aliases for the
lookup, submit, status and file endpoints. /admin/ is the Django admin.
"""

from django.contrib import admin
from django.urls import path, re_path

from downloads.views import (
    download_file_view,
    download_status_view,
    download_view,
    health_view,
    history_view,
    system_status_view,
    video_info_view,
    video_qualities_view,
)

admin.site.site_header = 'TubeGate Administration'
admin.site.site_title = 'TubeGate site admin'


urlpatterns = [
    path('admin/', admin.site.urls),
    # Public
    path('api/v1/health/', health_view, name='health'),
    # Requires an API key
    path('api/v1/video/info/', video_info_view, name='video_info'),
    path('api/v1/video/qualities/', video_qualities_view, name='video_qualities'),
    path('api/v1/download/', download_view, name='download'),
    path('api/v1/download/<int:job_id>/status/', download_status_view, name='download_status'),
    path('api/v1/download/<int:job_id>/file/', download_file_view, name='download_file'),
    path('api/v1/downloads/', history_view, name='download_history'),
    path('api/v1/system/status/', system_status_view, name='system_status'),
    # Unversioned aliases kept for older clients; the trailing slash is optional
    re_path(r'^api/video-info/?$', video_info_view, name='legacy_video_info'),
    re_path(r'^api/download-video/?$', download_view, name='legacy_download'),
    re_path(
        r'^api/download-status/(?P<job_id>[0-9]+)/?$',
        download_status_view,
        name='legacy_download_status',
    ),
    re_path(
        r'^api/download-file/(?P<job_id>[0-9]+)/?$',
        download_file_view,
        name='legacy_download_file',
    ),
]
