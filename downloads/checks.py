from django.conf import settings
from django.core import checks

LOCMEM_BACKEND = 'django.core.cache.backends.locmem.LocMemCache'


@checks.register(checks.Tags.caches)
def check_ratelimit_cache(app_configs, **kwargs):
    """Warn when rate limit counters would be kept per process"""
    if settings.DEBUG:
        return []

    alias = settings.TUBEGATE_RATELIMIT_CACHE
    backend = settings.CACHES.get(alias, {}).get('BACKEND')
    if backend == LOCMEM_BACKEND:
        return [
            checks.Warning(
                f"The '{alias}' cache uses LocMemCache, so each server process counts "
                'requests separately and the effective rate limit is multiplied by the '
                'number of processes.',
                hint='Set REDIS_URL to share rate limit counters between processes.',
                id='downloads.W001',
            )
        ]
    return []
