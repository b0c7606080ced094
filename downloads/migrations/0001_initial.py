import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='ApiKey',
            fields=[
                (
                    'id',
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name='ID'
                    ),
                ),
                ('name', models.CharField(max_length=255)),
                ('key_prefix', models.CharField(editable=False, max_length=16)),
                ('key_hash', models.CharField(editable=False, max_length=64, unique=True)),
                ('secret_hash', models.CharField(editable=False, max_length=64)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('rate_limit_per_minute', models.IntegerField(default=60)),
                ('rate_limit_per_hour', models.IntegerField(default=1000)),
                ('rate_limit_per_day', models.IntegerField(default=10000)),
                ('allowed_formats', models.JSONField(blank=True, null=True)),
                ('allowed_ips', models.JSONField(blank=True, null=True)),
                ('usage_count', models.PositiveIntegerField(default=0)),
                ('last_used_at', models.DateTimeField(blank=True, db_index=True, null=True)),
                ('expires_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'API key',
                'ordering': ['-created_at'],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(
                            ('rate_limit_per_minute__gte', 0),
                            ('rate_limit_per_hour__gte', 0),
                            ('rate_limit_per_day__gte', 0),
                        ),
                        name='apikey_rate_limits_non_negative',
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name='DownloadJob',
            fields=[
                (
                    'id',
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name='ID'
                    ),
                ),
                ('source_url', models.URLField(max_length=2048)),
                ('video_id', models.CharField(max_length=64)),
                ('title', models.CharField(blank=True, max_length=500)),
                ('thumbnail', models.URLField(blank=True, max_length=2048)),
                ('duration_seconds', models.PositiveIntegerField(blank=True, null=True)),
                (
                    'format',
                    models.CharField(
                        choices=[
                            ('mp4', 'MP4 Video'),
                            ('mp3', 'MP3 Audio'),
                            ('webm', 'WebM Video'),
                            ('avi', 'AVI Video'),
                        ],
                        max_length=10,
                    ),
                ),
                (
                    'quality',
                    models.CharField(
                        blank=True,
                        choices=[
                            ('144p', '144p'),
                            ('240p', '240p'),
                            ('360p', '360p'),
                            ('480p', '480p'),
                            ('720p', '720p'),
                            ('1080p', '1080p'),
                            ('1440p', '1440p'),
                            ('2160p', '2160p (4K)'),
                        ],
                        max_length=10,
                        null=True,
                    ),
                ),
                ('ip_address', models.GenericIPAddressField()),
                ('user_agent', models.CharField(blank=True, max_length=500)),
                (
                    'status',
                    models.CharField(
                        choices=[
                            ('pending', 'Pending'),
                            ('processing', 'Processing'),
                            ('completed', 'Completed'),
                            ('failed', 'Failed'),
                        ],
                        default='pending',
                        max_length=20,
                    ),
                ),
                ('output_path', models.CharField(blank=True, max_length=1024, null=True)),
                ('file_size', models.BigIntegerField(blank=True, null=True)),
                ('error_message', models.TextField(blank=True, null=True)),
                ('attempts', models.PositiveIntegerField(default=0)),
                ('next_retry_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                (
                    'api_key',
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name='downloads',
                        to='downloads.apikey',
                    ),
                ),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(
                        fields=['video_id', 'format'], name='downloads_d_video_i_5f2c1e_idx'
                    ),
                    models.Index(fields=['status'], name='downloads_d_status_8b1a0d_idx'),
                    models.Index(fields=['ip_address'], name='downloads_d_ip_addr_3c9e47_idx'),
                    models.Index(fields=['created_at'], name='downloads_d_created_a71d2f_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(('format__in', ['mp3']), _negated=True),
                            ('quality__isnull', True),
                            _connector='OR',
                        ),
                        name='downloadjob_audio_has_no_quality',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(
                                ('status', 'completed'),
                                ('output_path__isnull', False),
                                ('file_size__isnull', False),
                            ),
                            models.Q(
                                models.Q(('status', 'completed'), _negated=True),
                                ('output_path__isnull', True),
                                ('file_size__isnull', True),
                            ),
                            _connector='OR',
                        ),
                        name='downloadjob_output_iff_completed',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(('status', 'failed'), ('error_message__isnull', False)),
                            models.Q(
                                models.Q(('status', 'failed'), _negated=True),
                                ('error_message__isnull', True),
                            ),
                            _connector='OR',
                        ),
                        name='downloadjob_error_iff_failed',
                    ),
                ],
            },
        ),
    ]
