"""
Tests for downloads/models.py
"""

from datetime import timedelta

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.test import TestCase, override_settings
from django.utils import timezone

from downloads.models import (
    ApiKey,
    Completed,
    DownloadJob,
    Failed,
    InvalidTransition,
    format_bytes,
    format_duration,
    hash_key,
)


def make_job(**kwargs):
    defaults = {
        'source_url': 'https://www.youtube.com/watch?v=dQw4w9WgXcQ',
        'video_id': 'dQw4w9WgXcQ',
        'title': 'Test Video',
        'format': 'mp4',
        'quality': '720p',
        'ip_address': '127.0.0.1',
    }
    defaults.update(kwargs)
    return DownloadJob.objects.create(**defaults)


class ApiKeyCreationTest(TestCase):
    """Test API key generation and lookup"""

    def test_create_key_returns_plaintext_once(self):
        """Test that only the hash of the key is stored"""
        api_key, plaintext = ApiKey.objects.create_key('client')

        self.assertTrue(plaintext.startswith('yt_'))
        self.assertEqual(len(plaintext), 35)
        self.assertEqual(api_key.key_hash, hash_key(plaintext))
        self.assertEqual(api_key.key_prefix, plaintext[:7])
        self.assertNotIn(plaintext, api_key.key_hash)

    def test_create_key_generates_distinct_keys(self):
        _, first = ApiKey.objects.create_key('a')
        _, second = ApiKey.objects.create_key('b')
        self.assertNotEqual(first, second)

    @override_settings(
        TUBEGATE_RATE_LIMIT_MINUTE=5, TUBEGATE_RATE_LIMIT_HOUR=50, TUBEGATE_RATE_LIMIT_DAY=500
    )
    def test_create_key_uses_default_limits(self):
        """Test that rate limits default to the configured values"""
        api_key, _ = ApiKey.objects.create_key('client')
        self.assertEqual(api_key.rate_limits, {'minute': 5, 'hour': 50, 'day': 500})

    def test_create_key_rejects_negative_limit(self):
        with self.assertRaises(ValidationError):
            ApiKey.objects.create_key('client', rate_limit_per_minute=-1)
        self.assertEqual(ApiKey.objects.count(), 0)

    def test_create_key_rejects_unknown_format(self):
        with self.assertRaises(ValidationError):
            ApiKey.objects.create_key('client', allowed_formats=['flac'])

    def test_create_key_allows_zero_limit(self):
        api_key, _ = ApiKey.objects.create_key('client', rate_limit_per_day=0)
        self.assertEqual(api_key.rate_limit_per_day, 0)

    def test_empty_restrictions_mean_unrestricted(self):
        api_key, _ = ApiKey.objects.create_key('client', allowed_formats=[], allowed_ips=[])
        self.assertIsNone(api_key.allowed_formats)
        self.assertIsNone(api_key.allowed_ips)

    def test_validate_finds_key_by_plaintext(self):
        api_key, plaintext = ApiKey.objects.create_key('client')
        self.assertEqual(ApiKey.objects.validate(plaintext), api_key)

    def test_validate_unknown_key(self):
        ApiKey.objects.create_key('client')
        self.assertIsNone(ApiKey.objects.validate('yt_' + 'x' * 32))
        self.assertIsNone(ApiKey.objects.validate(''))


class ApiKeyBehaviourTest(TestCase):
    """Test API key validity and restrictions"""

    def test_inactive_key_is_not_valid(self):
        api_key, _ = ApiKey.objects.create_key('client', is_active=False)
        self.assertFalse(api_key.is_valid())

    def test_expired_key_is_not_valid(self):
        past = timezone.now() - timedelta(minutes=1)
        api_key, _ = ApiKey.objects.create_key('client', expires_at=past)
        self.assertFalse(api_key.is_valid())
        self.assertIn(api_key, ApiKey.objects.expired())
        self.assertNotIn(api_key, ApiKey.objects.active())

    def test_future_expiry_is_valid(self):
        future = timezone.now() + timedelta(days=1)
        api_key, _ = ApiKey.objects.create_key('client', expires_at=future)
        self.assertTrue(api_key.is_valid())
        self.assertIn(api_key, ApiKey.objects.active())

    def test_ip_restriction(self):
        api_key, _ = ApiKey.objects.create_key('client', allowed_ips=['10.0.0.1'])
        self.assertTrue(api_key.is_ip_allowed('10.0.0.1'))
        self.assertFalse(api_key.is_ip_allowed('10.0.0.2'))

    def test_format_restriction(self):
        api_key, _ = ApiKey.objects.create_key('client', allowed_formats=['mp3'])
        self.assertTrue(api_key.is_format_allowed('mp3'))
        self.assertFalse(api_key.is_format_allowed('mp4'))

    def test_record_usage(self):
        """Test that record_usage increments the counter and stamps the time"""
        api_key, _ = ApiKey.objects.create_key('client')
        now = timezone.now()

        api_key.record_usage(now=now)
        api_key.record_usage(now=now)

        api_key.refresh_from_db()
        self.assertEqual(api_key.usage_count, 2)
        self.assertEqual(api_key.last_used_at, now)


class DownloadJobTransitionTest(TestCase):
    """Test the job state machine"""

    def test_new_job_is_pending(self):
        job = make_job()
        self.assertEqual(job.status, DownloadJob.STATUS_PENDING)
        self.assertIsNone(job.outcome)
        self.assertFalse(job.is_terminal)

    def test_complete_lifecycle(self):
        """Test pending -> processing -> completed"""
        job = make_job()

        job.mark_processing(attempt=1)
        self.assertTrue(job.is_processing)
        self.assertIsNotNone(job.started_at)
        self.assertEqual(job.attempts, 1)

        job.mark_completed('/tmp/out.mp4', 1000000)

        job.refresh_from_db()
        self.assertEqual(job.status, DownloadJob.STATUS_COMPLETED)
        self.assertEqual(job.file_size, 1000000)
        self.assertIsNotNone(job.completed_at)
        self.assertEqual(
            job.outcome, Completed('/tmp/out.mp4', 1000000, job.completed_at)
        )

    def test_failed_lifecycle(self):
        job = make_job()
        job.mark_processing()
        job.mark_failed('Private video')

        job.refresh_from_db()
        self.assertTrue(job.is_failed)
        self.assertIsNone(job.output_path)
        self.assertEqual(job.outcome, Failed('Private video', job.completed_at))

    def test_retry_keeps_original_start(self):
        """Test that re-entering processing does not move started_at"""
        job = make_job()
        job.mark_processing(attempt=1)
        started_at = job.started_at

        job.mark_processing(attempt=2)

        job.refresh_from_db()
        self.assertEqual(job.started_at, started_at)
        self.assertEqual(job.attempts, 2)

    def test_cannot_complete_pending_job(self):
        job = make_job()
        with self.assertRaises(InvalidTransition):
            job.mark_completed('/tmp/out.mp4', 10)
        job.refresh_from_db()
        self.assertEqual(job.status, DownloadJob.STATUS_PENDING)

    def test_cannot_fail_pending_job(self):
        job = make_job()
        with self.assertRaises(InvalidTransition):
            job.mark_failed('boom')

    def test_terminal_job_cannot_move(self):
        """Test that a completed job never goes back to processing or failed"""
        job = make_job()
        job.mark_processing()
        job.mark_completed('/tmp/out.mp4', 10)

        with self.assertRaises(InvalidTransition):
            job.mark_processing()
        with self.assertRaises(InvalidTransition):
            job.mark_failed('late failure')

        job.refresh_from_db()
        self.assertEqual(job.status, DownloadJob.STATUS_COMPLETED)
        self.assertIsNone(job.error_message)

    def test_stale_instance_cannot_overwrite(self):
        """Test that a stale copy of a finished job is rejected"""
        job = make_job()
        job.mark_processing()
        stale = DownloadJob.objects.get(pk=job.pk)

        job.mark_failed('Private video')

        with self.assertRaises(InvalidTransition):
            stale.mark_completed('/tmp/out.mp4', 10)
        self.assertEqual(stale.status, DownloadJob.STATUS_FAILED)

    def test_complete_requires_output(self):
        job = make_job()
        job.mark_processing()
        with self.assertRaises(ValueError):
            job.mark_completed('', 10)
        with self.assertRaises(ValueError):
            job.mark_completed('/tmp/out.mp4', None)

    def test_failed_message_defaults(self):
        job = make_job()
        job.mark_processing()
        job.mark_failed('')
        self.assertEqual(job.error_message, 'Download failed')


class DownloadJobValidationTest(TestCase):
    """Test field rules enforced by clean() and the database"""

    def test_audio_with_quality_fails_validation(self):
        job = DownloadJob(
            source_url='https://www.youtube.com/watch?v=dQw4w9WgXcQ',
            video_id='dQw4w9WgXcQ',
            format='mp3',
            quality='720p',
            ip_address='127.0.0.1',
        )
        with self.assertRaises(ValidationError) as ctx:
            job.full_clean()
        self.assertIn('quality', ctx.exception.message_dict)

    def test_audio_with_quality_rejected_by_database(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                make_job(format='mp3', quality='720p')

    def test_output_without_completion_rejected_by_database(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                make_job(output_path='/tmp/out.mp4', file_size=10)

    def test_error_without_failure_rejected_by_database(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                make_job(error_message='boom')

    def test_queryset_helpers(self):
        old = make_job()
        DownloadJob.objects.filter(pk=old.pk).update(created_at=timezone.now() - timedelta(days=10))
        recent = make_job(video_id='aaaaaaaaaaa')

        self.assertEqual(list(DownloadJob.objects.recent(days=7)), [recent])
        self.assertEqual(DownloadJob.objects.by_status(DownloadJob.STATUS_PENDING).count(), 2)


class FormattingTest(TestCase):
    """Test display helpers"""

    def test_format_bytes(self):
        self.assertEqual(format_bytes(0), '0 B')
        self.assertEqual(format_bytes(512), '512 B')
        self.assertEqual(format_bytes(1536), '1.5 KB')
        self.assertEqual(format_bytes(3 * 1024 * 1024), '3 MB')

    def test_format_duration(self):
        self.assertEqual(format_duration(65), '01:05')
        self.assertEqual(format_duration(3725), '01:02:05')

    def test_job_formatted_fields(self):
        job = make_job(duration_seconds=212)
        self.assertEqual(job.formatted_duration, '03:32')
        self.assertIsNone(job.formatted_file_size)
