import hashlib
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from nanoid import generate

from downloads.service.config import get_default_rate_limits
from downloads.service.constants import AUDIO_FORMATS, FORMATS, QUALITIES

KEY_ALPHABET = 'ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789'


def generate_api_key():
    """Generate a new plaintext API key: 'yt_' + 32 NanoID characters"""
    return 'yt_' + generate(KEY_ALPHABET, size=32)


def generate_api_secret():
    return generate(KEY_ALPHABET, size=64)


def hash_key(value):
    """One-way hash used for stored keys and secrets"""
    return hashlib.sha256(value.encode('utf-8')).hexdigest()


def format_bytes(num_bytes, precision=2):
    """Format a byte count as '1.5 MB'"""
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    num_bytes = max(num_bytes, 0)
    power = int(math.floor(math.log(num_bytes, 1024))) if num_bytes else 0
    power = min(power, len(units) - 1)
    value = round(num_bytes / (1024**power), precision)
    return f'{value:g} {units[power]}'


def format_duration(seconds):
    """Format seconds as MM:SS, or HH:MM:SS when an hour or longer"""
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f'{hours:02d}:{minutes:02d}:{secs:02d}'
    return f'{minutes:02d}:{secs:02d}'


@dataclass(frozen=True)
class Completed:
    """Terminal outcome of a successful download"""

    output_path: str
    file_size: int
    completed_at: datetime


@dataclass(frozen=True)
class Failed:
    """Terminal outcome of a failed download"""

    error_message: str
    completed_at: datetime


class InvalidTransition(Exception):
    """Job is not in a state that allows the requested transition"""


class ApiKeyQuerySet(models.QuerySet):
    def active(self):
        now = timezone.now()
        return self.filter(is_active=True).filter(
            Q(expires_at__isnull=True) | Q(expires_at__gt=now)
        )

    def expired(self):
        return self.filter(expires_at__lte=timezone.now())


class ApiKeyManager(models.Manager.from_queryset(ApiKeyQuerySet)):
    def create_key(self, name, **options):
        """
        Create an API key with generated credentials.

        The plaintext key is returned once and never stored; only its
        hash is kept.

        Args:
            name: Label for the key
            **options: is_active, rate_limit_per_minute/hour/day,
                allowed_formats, allowed_ips, expires_at

        Returns:
            tuple: (ApiKey, plaintext_key)

        Raises:
            ValidationError: If a rate limit is negative or a format unknown
        """
        defaults = get_default_rate_limits()
        plaintext = generate_api_key()

        api_key = self.model(
            name=name,
            key_prefix=plaintext[:7],
            key_hash=hash_key(plaintext),
            secret_hash=hash_key(generate_api_secret()),
            is_active=options.get('is_active', True),
            rate_limit_per_minute=options.get('rate_limit_per_minute', defaults['minute']),
            rate_limit_per_hour=options.get('rate_limit_per_hour', defaults['hour']),
            rate_limit_per_day=options.get('rate_limit_per_day', defaults['day']),
            allowed_formats=options.get('allowed_formats') or None,
            allowed_ips=options.get('allowed_ips') or None,
            expires_at=options.get('expires_at'),
        )
        api_key.full_clean()
        api_key.save()
        return api_key, plaintext

    def validate(self, key):
        """Look up the ApiKey for a presented plaintext key, or None"""
        if not key:
            return None
        return self.filter(key_hash=hash_key(key)).first()


class ApiKey(models.Model):
    """API credential with its own rate limits and restrictions"""

    name = models.CharField(max_length=255)
    key_prefix = models.CharField(max_length=16, editable=False)
    key_hash = models.CharField(max_length=64, unique=True, editable=False)
    secret_hash = models.CharField(max_length=64, editable=False)

    is_active = models.BooleanField(default=True, db_index=True)

    # Negative limits are rejected by validators; 0 means always denied
    rate_limit_per_minute = models.IntegerField(default=60)
    rate_limit_per_hour = models.IntegerField(default=1000)
    rate_limit_per_day = models.IntegerField(default=10000)

    # None means no restriction
    allowed_formats = models.JSONField(null=True, blank=True)
    allowed_ips = models.JSONField(null=True, blank=True)

    usage_count = models.PositiveIntegerField(default=0)
    last_used_at = models.DateTimeField(null=True, blank=True, db_index=True)
    expires_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ApiKeyManager()

    class Meta:
        verbose_name = 'API key'
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=Q(rate_limit_per_minute__gte=0)
                & Q(rate_limit_per_hour__gte=0)
                & Q(rate_limit_per_day__gte=0),
                name='apikey_rate_limits_non_negative',
            ),
        ]

    def __str__(self):
        return f'{self.name} ({self.key_prefix}…)'

    def clean(self):
        errors = {}
        for field_name in ('rate_limit_per_minute', 'rate_limit_per_hour', 'rate_limit_per_day'):
            value = getattr(self, field_name)
            if value is None or value < 0:
                errors[field_name] = 'Rate limit must be zero or a positive integer.'
        if self.allowed_formats:
            unknown = [f for f in self.allowed_formats if f not in FORMATS]
            if unknown:
                errors['allowed_formats'] = f'Invalid format(s): {", ".join(unknown)}'
        if errors:
            raise ValidationError(errors)

    @property
    def rate_limits(self):
        return {
            'minute': self.rate_limit_per_minute,
            'hour': self.rate_limit_per_hour,
            'day': self.rate_limit_per_day,
        }

    def is_valid(self, now=None):
        """Active and not past its expiry"""
        now = now or timezone.now()
        return self.is_active and (self.expires_at is None or self.expires_at > now)

    def is_ip_allowed(self, ip):
        if self.allowed_ips is None:
            return True
        return ip in self.allowed_ips

    def is_format_allowed(self, fmt):
        if self.allowed_formats is None:
            return True
        return fmt in self.allowed_formats

    def record_usage(self, now=None):
        """Increment the usage counter and stamp last_used_at"""
        now = now or timezone.now()
        ApiKey.objects.filter(pk=self.pk).update(usage_count=F('usage_count') + 1, last_used_at=now)
        self.refresh_from_db(fields=['usage_count', 'last_used_at'])


class DownloadJobQuerySet(models.QuerySet):
    def by_status(self, status):
        return self.filter(status=status)

    def recent(self, days=7):
        return self.filter(created_at__gte=timezone.now() - timedelta(days=days))


class DownloadJob(models.Model):
    """One tracked request to download a video in a given format/quality"""

    # Status choices
    STATUS_PENDING = 'pending'
    STATUS_PROCESSING = 'processing'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
    ]

    TERMINAL_STATUSES = [STATUS_COMPLETED, STATUS_FAILED]

    FORMAT_CHOICES = list(FORMATS.items())
    QUALITY_CHOICES = list(QUALITIES.items())

    # Source
    source_url = models.URLField(max_length=2048)
    video_id = models.CharField(max_length=64)
    title = models.CharField(max_length=500, blank=True)
    thumbnail = models.URLField(max_length=2048, blank=True)
    duration_seconds = models.PositiveIntegerField(null=True, blank=True)

    # Request
    format = models.CharField(max_length=10, choices=FORMAT_CHOICES)
    quality = models.CharField(max_length=10, choices=QUALITY_CHOICES, null=True, blank=True)
    ip_address = models.GenericIPAddressField()
    user_agent = models.CharField(max_length=500, blank=True)
    api_key = models.ForeignKey(
        ApiKey, null=True, blank=True, on_delete=models.SET_NULL, related_name='downloads'
    )

    # Lifecycle
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    output_path = models.CharField(max_length=1024, null=True, blank=True)
    file_size = models.BigIntegerField(null=True, blank=True)
    error_message = models.TextField(null=True, blank=True)

    # Retry bookkeeping for the async track
    attempts = models.PositiveIntegerField(default=0)
    next_retry_at = models.DateTimeField(null=True, blank=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = DownloadJobQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['video_id', 'format'], name='downloads_d_video_i_5f2c1e_idx'),
            models.Index(fields=['status'], name='downloads_d_status_8b1a0d_idx'),
            models.Index(fields=['ip_address'], name='downloads_d_ip_addr_3c9e47_idx'),
            models.Index(fields=['created_at'], name='downloads_d_created_a71d2f_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=~Q(format__in=AUDIO_FORMATS) | Q(quality__isnull=True),
                name='downloadjob_audio_has_no_quality',
            ),
            models.CheckConstraint(
                condition=(
                    Q(status='completed', output_path__isnull=False, file_size__isnull=False)
                    | (~Q(status='completed') & Q(output_path__isnull=True, file_size__isnull=True))
                ),
                name='downloadjob_output_iff_completed',
            ),
            models.CheckConstraint(
                condition=(
                    Q(status='failed', error_message__isnull=False)
                    | (~Q(status='failed') & Q(error_message__isnull=True))
                ),
                name='downloadjob_error_iff_failed',
            ),
        ]

    def __str__(self):
        return f'Download #{self.pk} {self.video_id} {self.format} ({self.status})'

    def clean(self):
        if self.format in AUDIO_FORMATS and self.quality:
            raise ValidationError(
                {'quality': 'Quality parameter is not applicable for audio format.'}
            )

    @property
    def is_completed(self):
        return self.status == self.STATUS_COMPLETED

    @property
    def is_failed(self):
        return self.status == self.STATUS_FAILED

    @property
    def is_processing(self):
        return self.status == self.STATUS_PROCESSING

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @property
    def outcome(self):
        """Completed, Failed, or None while the job is still running"""
        if self.status == self.STATUS_COMPLETED:
            return Completed(self.output_path, self.file_size, self.completed_at)
        if self.status == self.STATUS_FAILED:
            return Failed(self.error_message, self.completed_at)
        return None

    @property
    def formatted_file_size(self):
        return format_bytes(self.file_size) if self.file_size else None

    @property
    def formatted_duration(self):
        return format_duration(self.duration_seconds) if self.duration_seconds else None

    def _transition(self, allowed_from, **changes):
        """
        Apply a conditional UPDATE so a stale or concurrent writer can
        never move the job backwards.
        """
        updated = DownloadJob.objects.filter(pk=self.pk, status__in=allowed_from).update(
            updated_at=timezone.now(), **changes
        )
        if not updated:
            self.refresh_from_db(fields=['status'])
            raise InvalidTransition(
                f'Download #{self.pk} cannot move from {self.status} to {changes["status"]}'
            )
        for name, value in changes.items():
            setattr(self, name, value)

    def mark_processing(self, attempt=None, now=None):
        """
        Enter or stay in processing.

        started_at is only recorded the first time, so retries keep the
        original start. attempt, when given, becomes the attempt counter.
        """
        now = now or timezone.now()
        changes = {'status': self.STATUS_PROCESSING, 'next_retry_at': None}
        if attempt is not None:
            changes['attempts'] = attempt
        if self.started_at is None:
            changes['started_at'] = now
        self._transition([self.STATUS_PENDING, self.STATUS_PROCESSING], **changes)

    def mark_completed(self, output_path, file_size, now=None):
        if not output_path or file_size is None:
            raise ValueError('A completed download needs an output path and size')
        self._transition(
            [self.STATUS_PROCESSING],
            status=self.STATUS_COMPLETED,
            output_path=str(output_path),
            file_size=file_size,
            next_retry_at=None,
            completed_at=now or timezone.now(),
        )

    def mark_failed(self, error_message, now=None):
        self._transition(
            [self.STATUS_PROCESSING],
            status=self.STATUS_FAILED,
            error_message=error_message or 'Download failed',
            next_retry_at=None,
            completed_at=now or timezone.now(),
        )
