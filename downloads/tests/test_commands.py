"""
Tests for the generate_api_key and cleanup_downloads management commands
"""

import shutil
import tempfile
from datetime import timedelta
from io import StringIO
from pathlib import Path
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings
from django.utils import timezone

from downloads.models import ApiKey, DownloadJob, hash_key


class GenerateApiKeyCommandTest(TestCase):
    """Test API key creation from the command line"""

    def test_prints_key_once_and_stores_hash(self):
        out = StringIO()
        call_command('generate_api_key', 'my client', stdout=out)

        api_key = ApiKey.objects.get()
        key_line = next(line for line in out.getvalue().splitlines() if line.startswith('API Key'))
        plaintext = key_line.split()[-1]

        self.assertTrue(plaintext.startswith('yt_'))
        self.assertEqual(api_key.key_hash, hash_key(plaintext))
        self.assertEqual(api_key.name, 'my client')
        self.assertTrue(api_key.is_active)

    def test_options(self):
        call_command(
            'generate_api_key',
            'restricted',
            '--rate-minute=5',
            '--rate-hour=50',
            '--rate-day=500',
            '--formats', 'mp3', 'mp4',
            '--ips', '10.0.0.1',
            '--expires=2030-01-01 00:00:00',
            '--inactive',
            stdout=StringIO(),
        )

        api_key = ApiKey.objects.get()
        self.assertEqual(api_key.rate_limits, {'minute': 5, 'hour': 50, 'day': 500})
        self.assertEqual(api_key.allowed_formats, ['mp3', 'mp4'])
        self.assertEqual(api_key.allowed_ips, ['10.0.0.1'])
        self.assertEqual(api_key.expires_at.year, 2030)
        self.assertFalse(api_key.is_active)

    def test_invalid_format(self):
        with self.assertRaises(CommandError):
            call_command('generate_api_key', 'bad', '--formats', 'flac', stdout=StringIO())
        self.assertEqual(ApiKey.objects.count(), 0)

    def test_invalid_ip(self):
        with self.assertRaises(CommandError):
            call_command('generate_api_key', 'bad', '--ips', 'not-an-ip', stdout=StringIO())

    def test_invalid_expiry(self):
        with self.assertRaises(CommandError):
            call_command('generate_api_key', 'bad', '--expires=tomorrow', stdout=StringIO())

    def test_negative_limit(self):
        with self.assertRaises(CommandError):
            call_command('generate_api_key', 'bad', '--rate-minute=-1', stdout=StringIO())
        self.assertEqual(ApiKey.objects.count(), 0)


class CleanupDownloadsCommandTest(TestCase):
    """Test the retention sweep"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.settings_override = override_settings(TUBEGATE_DOWNLOAD_DIR=self.tmpdir)
        self.settings_override.enable()

    def tearDown(self):
        self.settings_override.disable()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def make_completed_job(self, name, age_days):
        path = Path(self.tmpdir) / name
        path.write_bytes(b'x' * 10)
        job = DownloadJob.objects.create(
            source_url='https://www.youtube.com/watch?v=dQw4w9WgXcQ',
            video_id='dQw4w9WgXcQ',
            title=name,
            format='mp4',
            quality='720p',
            ip_address='127.0.0.1',
        )
        job.mark_processing()
        job.mark_completed(str(path), 10)
        DownloadJob.objects.filter(pk=job.pk).update(
            created_at=timezone.now() - timedelta(days=age_days)
        )
        return job, path

    def test_deletes_old_files_and_records(self):
        old_job, old_path = self.make_completed_job('old.mp4', 10)
        new_job, new_path = self.make_completed_job('new.mp4', 1)

        call_command('cleanup_downloads', '--days=7', '--force', stdout=StringIO())

        self.assertFalse(old_path.exists())
        self.assertFalse(DownloadJob.objects.filter(pk=old_job.pk).exists())
        self.assertTrue(new_path.exists())
        self.assertTrue(DownloadJob.objects.filter(pk=new_job.pk).exists())

    def test_dry_run_deletes_nothing(self):
        job, path = self.make_completed_job('old.mp4', 10)
        out = StringIO()

        call_command('cleanup_downloads', '--dry-run', stdout=out)

        self.assertTrue(path.exists())
        self.assertTrue(DownloadJob.objects.filter(pk=job.pk).exists())
        self.assertIn('Would delete file', out.getvalue())

    def test_files_only_keeps_records(self):
        job, path = self.make_completed_job('old.mp4', 10)

        call_command('cleanup_downloads', '--force', '--files-only', stdout=StringIO())

        self.assertFalse(path.exists())
        self.assertTrue(DownloadJob.objects.filter(pk=job.pk).exists())

    def test_records_only_keeps_files(self):
        job, path = self.make_completed_job('old.mp4', 10)

        call_command('cleanup_downloads', '--force', '--records-only', stdout=StringIO())

        self.assertTrue(path.exists())
        self.assertFalse(DownloadJob.objects.filter(pk=job.pk).exists())

    def test_confirmation_declined(self):
        job, path = self.make_completed_job('old.mp4', 10)

        with patch('builtins.input', return_value='n'):
            call_command('cleanup_downloads', stdout=StringIO())

        self.assertTrue(path.exists())
        self.assertTrue(DownloadJob.objects.filter(pk=job.pk).exists())

    def test_days_must_be_positive(self):
        with self.assertRaises(CommandError):
            call_command('cleanup_downloads', '--days=0', stdout=StringIO())

    def test_nothing_to_clean(self):
        out = StringIO()
        call_command('cleanup_downloads', '--force', stdout=out)
        self.assertIn('No old downloads', out.getvalue())
