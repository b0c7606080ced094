from django.apps import AppConfig


class DownloadsConfig(AppConfig):
    name = 'downloads'
    default_auto_field = 'django.db.models.BigAutoField'
    verbose_name = 'Downloads'

    def ready(self):
        """Register system checks when the app is ready"""
        from downloads import checks  # noqa: F401
