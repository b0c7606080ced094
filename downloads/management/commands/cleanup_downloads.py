"""
Management command to remove old downloads.

Deletes artifacts and job records created before the retention cutoff,
then sweeps files in the download directory that no record points at.
"""

from datetime import timedelta
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from downloads.models import DownloadJob, format_bytes
from downloads.operations import cleanup_old_files
from downloads.service.config import get_cleanup_days


class Command(BaseCommand):
    help = 'Clean up old download files and database records'

    def add_arguments(self, parser):
        parser.add_argument(
            '--days',
            type=int,
            default=get_cleanup_days(),
            help='Delete downloads older than this many days (default: %(default)s)',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without actually deleting',
        )
        parser.add_argument(
            '--force',
            action='store_true',
            help='Delete without confirmation',
        )
        parser.add_argument(
            '--files-only',
            action='store_true',
            help='Only delete files, keep database records',
        )
        parser.add_argument(
            '--records-only',
            action='store_true',
            help='Only delete database records, keep files',
        )

    def handle(self, *args, **options):
        days = options['days']
        dry_run = options['dry_run']
        force = options['force']
        files_only = options['files_only']
        records_only = options['records_only']

        if days < 1:
            raise CommandError('Days must be at least 1')
        if files_only and records_only:
            raise CommandError('--files-only and --records-only cannot be combined')

        cutoff = timezone.now() - timedelta(days=days)
        self.stdout.write(
            f'Cleaning up downloads older than {days} days (before {cutoff:%Y-%m-%d %H:%M:%S})'
        )
        if dry_run:
            self.stdout.write(self.style.WARNING('DRY RUN: nothing will be deleted'))

        old_jobs = list(DownloadJob.objects.filter(created_at__lt=cutoff))
        if not old_jobs:
            self.stdout.write(self.style.SUCCESS('No old downloads found to clean up'))
            return

        self.stdout.write(f'\nFound {len(old_jobs)} old download records:')
        for status, label in DownloadJob.STATUS_CHOICES:
            count = sum(1 for job in old_jobs if job.status == status)
            self.stdout.write(f'  {label:12} {count}')

        files = [
            Path(job.output_path)
            for job in old_jobs
            if job.output_path and Path(job.output_path).is_file()
        ]
        total_size = sum(path.stat().st_size for path in files)
        self.stdout.write(f'Files to clean: {len(files)} files, {format_bytes(total_size)}\n')

        if not dry_run and not force:
            response = input('Proceed with the cleanup? [y/N]: ')
            if response.lower() != 'y':
                self.stdout.write('Cancelled')
                return

        deleted_files = 0
        deleted_records = 0
        errors = []

        for job in old_jobs:
            path = Path(job.output_path) if job.output_path else None

            if not records_only and path and path.is_file():
                if dry_run:
                    self.stdout.write(f'Would delete file: {path}')
                    deleted_files += 1
                else:
                    try:
                        path.unlink()
                        deleted_files += 1
                    except OSError as e:
                        errors.append(f'Failed to delete file {path}: {e}')

            if not files_only:
                if dry_run:
                    self.stdout.write(f'Would delete record: Download #{job.pk} - {job.title}')
                else:
                    job.delete()
                deleted_records += 1

        prefix = 'Would delete' if dry_run else 'Deleted'
        self.stdout.write(self.style.SUCCESS(f'\n{prefix} {deleted_files} files'))
        self.stdout.write(self.style.SUCCESS(f'{prefix} {deleted_records} database records'))

        for error in errors:
            self.stdout.write(self.style.ERROR(error))

        if not records_only and not dry_run:
            orphans = cleanup_old_files(days)
            if orphans:
                self.stdout.write(f'Cleaned up {orphans} additional orphaned files')
