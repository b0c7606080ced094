from django.contrib import admin
from django.utils.html import format_html

from downloads.models import ApiKey, DownloadJob
from downloads.operations import enqueue_download, get_job_log_path


@admin.register(DownloadJob)
class DownloadJobAdmin(admin.ModelAdmin):
    list_display = [
        'id',
        'title',
        'video_id',
        'format',
        'quality',
        'status',
        'attempts',
        'file_size_display',
        'ip_address',
        'created_at',
    ]

    list_filter = [
        'status',
        'format',
        'quality',
        'created_at',
    ]

    search_fields = [
        'title',
        'video_id',
        'source_url',
        'ip_address',
    ]

    readonly_fields = [
        'status',
        'output_path',
        'file_size',
        'error_message',
        'attempts',
        'next_retry_at',
        'created_at',
        'started_at',
        'completed_at',
        'updated_at',
        'log_display',
    ]

    fieldsets = [
        ('Source', {'fields': ['source_url', 'video_id', 'title', 'thumbnail', 'duration_seconds']}),
        ('Request', {'fields': ['format', 'quality', 'ip_address', 'user_agent', 'api_key']}),
        ('Status', {'fields': ['status', 'error_message', 'attempts', 'next_retry_at']}),
        ('Output', {'fields': ['output_path', 'file_size']}),
        ('Logs', {'fields': ['log_display']}),
        ('Timestamps', {'fields': ['created_at', 'started_at', 'completed_at', 'updated_at']}),
    ]

    actions = ['requeue_unfinished']

    def file_size_display(self, obj):
        return obj.formatted_file_size or '-'

    file_size_display.short_description = 'File Size'

    def log_display(self, obj):
        if not obj.pk:
            return 'No log file'

        log_path = get_job_log_path(obj)
        if not log_path.exists():
            return 'No log file'

        try:
            log_content = log_path.read_text()
        except OSError as e:
            return f'Error reading log: {e}'
        return format_html(
            '<pre style="background: #f5f5f5; padding: 10px; '
            'border-radius: 4px; max-height: 400px; overflow: auto;">{}</pre>',
            log_content,
        )

    log_display.short_description = 'Log'

    def requeue_unfinished(self, request, queryset):
        count = 0
        for job in queryset.exclude(status__in=DownloadJob.TERMINAL_STATUSES):
            enqueue_download(job)
            count += 1
        self.message_user(request, f'Queued {count} unfinished downloads.')

    requeue_unfinished.short_description = 'Queue selected unfinished downloads'


@admin.register(ApiKey)
class ApiKeyAdmin(admin.ModelAdmin):
    list_display = [
        'name',
        'key_prefix',
        'is_active',
        'rate_limit_per_minute',
        'rate_limit_per_hour',
        'rate_limit_per_day',
        'usage_count',
        'last_used_at',
        'expires_at',
    ]

    list_filter = ['is_active', 'created_at']

    search_fields = ['name', 'key_prefix']

    # Hashes are never shown; new keys come from the generate_api_key command
    exclude = ['key_hash', 'secret_hash']

    readonly_fields = ['key_prefix', 'usage_count', 'last_used_at', 'created_at', 'updated_at']

    actions = ['deactivate_keys']

    def has_add_permission(self, request):
        return False

    def deactivate_keys(self, request, queryset):
        count = queryset.update(is_active=False)
        self.message_user(request, f'Deactivated {count} API keys.')

    deactivate_keys.short_description = 'Deactivate selected keys'
