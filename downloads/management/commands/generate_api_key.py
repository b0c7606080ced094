"""
Management command to create an API key.

The plaintext key is printed once; only its hash is stored.
"""

from datetime import datetime
from ipaddress import ip_address

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from downloads.models import ApiKey
from downloads.service.config import get_default_rate_limits
from downloads.service.constants import FORMATS


class Command(BaseCommand):
    help = 'Generate a new API key'

    def add_arguments(self, parser):
        defaults = get_default_rate_limits()
        parser.add_argument('name', help='Name for the API key')
        parser.add_argument(
            '--rate-minute',
            type=int,
            default=defaults['minute'],
            help=f'Rate limit per minute (default: {defaults["minute"]})',
        )
        parser.add_argument(
            '--rate-hour',
            type=int,
            default=defaults['hour'],
            help=f'Rate limit per hour (default: {defaults["hour"]})',
        )
        parser.add_argument(
            '--rate-day',
            type=int,
            default=defaults['day'],
            help=f'Rate limit per day (default: {defaults["day"]})',
        )
        parser.add_argument(
            '--formats',
            nargs='*',
            default=[],
            help=f'Allowed formats ({", ".join(FORMATS)}); all when omitted',
        )
        parser.add_argument(
            '--ips',
            nargs='*',
            default=[],
            help='Allowed client IP addresses; all when omitted',
        )
        parser.add_argument(
            '--expires',
            help='Expiration date as "YYYY-MM-DD HH:MM:SS"',
        )
        parser.add_argument(
            '--inactive',
            action='store_true',
            help='Create the key inactive',
        )

    def handle(self, *args, **options):
        formats = options['formats']
        for fmt in formats:
            if fmt not in FORMATS:
                raise CommandError(f'Invalid format: {fmt}. Valid formats: {", ".join(FORMATS)}')

        ips = options['ips']
        for ip in ips:
            try:
                ip_address(ip)
            except ValueError:
                raise CommandError(f'Invalid IP address: {ip}')

        expires_at = None
        if options['expires']:
            try:
                expires_at = datetime.strptime(options['expires'], '%Y-%m-%d %H:%M:%S')
            except ValueError:
                raise CommandError('Invalid expiration date format. Use: YYYY-MM-DD HH:MM:SS')
            expires_at = timezone.make_aware(expires_at)

        try:
            api_key, plaintext = ApiKey.objects.create_key(
                options['name'],
                is_active=not options['inactive'],
                rate_limit_per_minute=options['rate_minute'],
                rate_limit_per_hour=options['rate_hour'],
                rate_limit_per_day=options['rate_day'],
                allowed_formats=formats,
                allowed_ips=ips,
                expires_at=expires_at,
            )
        except ValidationError as e:
            raise CommandError(f'Failed to create API key: {"; ".join(e.messages)}')

        self.stdout.write(self.style.SUCCESS('API key generated successfully!'))
        self.stdout.write('')
        rows = [
            ('ID', api_key.pk),
            ('Name', api_key.name),
            ('API Key', plaintext),
            ('Status', 'Active' if api_key.is_active else 'Inactive'),
            (
                'Rate Limits',
                f'{api_key.rate_limit_per_minute}/min, {api_key.rate_limit_per_hour}/hour, '
                f'{api_key.rate_limit_per_day}/day',
            ),
            ('Allowed Formats', ', '.join(api_key.allowed_formats) if api_key.allowed_formats else 'All'),
            ('Allowed IPs', ', '.join(api_key.allowed_ips) if api_key.allowed_ips else 'All'),
            ('Expires At', api_key.expires_at.strftime('%Y-%m-%d %H:%M:%S') if api_key.expires_at else 'Never'),
        ]
        for field, value in rows:
            self.stdout.write(f'{field:16} {value}')

        self.stdout.write('')
        self.stdout.write(self.style.WARNING('Store this API key securely! It cannot be retrieved again.'))
        self.stdout.write(f'Use it in the Authorization header: Bearer {plaintext}')
        self.stdout.write(f'Or as a parameter: ?api_key={plaintext}')
