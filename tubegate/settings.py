"""
Django settings for tubegate project.

Every TUBEGATE_* setting can be overridden from the environment.
"""

import os
import sys
from pathlib import Path


def env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


def env_int(name, default):
    value = os.environ.get(name)
    if value in (None, ''):
        return default
    return int(value)


def env_int_list(name, default):
    value = os.environ.get(name)
    if not value:
        return default
    return [int(part) for part in value.split(',') if part.strip()]


BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-change-me-in-production')

DEBUG = env_bool('DJANGO_DEBUG', False)

# Test runs execute huey tasks inline
TESTING = 'pytest' in sys.modules or (len(sys.argv) > 1 and sys.argv[1] == 'test')

ALLOWED_HOSTS = [h.strip() for h in os.environ.get('DJANGO_ALLOWED_HOSTS', '*').split(',') if h.strip()]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'huey.contrib.djhuey',
    'downloads',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'tubegate.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'tubegate.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('TUBEGATE_DB_PATH', str(BASE_DIR / 'db.sqlite3')),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Rate-limit counters live in their own cache alias so they can point at a
# shared Redis while everything else stays local.
REDIS_URL = os.environ.get('REDIS_URL', '')

if REDIS_URL:
    _ratelimit_cache = {
        'BACKEND': 'django.core.cache.backends.redis.RedisCache',
        'LOCATION': REDIS_URL,
    }
else:
    _ratelimit_cache = {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'tubegate-ratelimit',
    }

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'tubegate-default',
    },
    'ratelimit': _ratelimit_cache,
}

TUBEGATE_RATELIMIT_CACHE = 'ratelimit'

# Huey task queue
HUEY = {
    'huey_class': 'huey.SqliteHuey',
    'name': 'tubegate',
    'filename': os.environ.get('TUBEGATE_HUEY_DB', str(BASE_DIR / 'huey.sqlite3')),
    'immediate': env_bool('HUEY_IMMEDIATE', DEBUG or TESTING),
    'consumer': {
        'workers': env_int('TUBEGATE_WORKERS', 4),
        'worker_type': 'thread',
        # Job locks left behind by a killed consumer are cleared on start
        'flush_locks': True,
    },
}

# yt-dlp binary used for media downloads
TUBEGATE_YT_DLP_PATH = os.environ.get('TUBEGATE_YT_DLP_PATH', 'yt-dlp')

# Where finished downloads are written
TUBEGATE_DOWNLOAD_DIR = os.environ.get(
    'TUBEGATE_DOWNLOAD_DIR', str(BASE_DIR / 'storage' / 'downloads')
)

# Default per-key limits
TUBEGATE_RATE_LIMIT_MINUTE = env_int('TUBEGATE_RATE_LIMIT_MINUTE', 60)
TUBEGATE_RATE_LIMIT_HOUR = env_int('TUBEGATE_RATE_LIMIT_HOUR', 1000)
TUBEGATE_RATE_LIMIT_DAY = env_int('TUBEGATE_RATE_LIMIT_DAY', 10000)

# Async job retry policy
TUBEGATE_MAX_ATTEMPTS = env_int('TUBEGATE_MAX_ATTEMPTS', 3)
TUBEGATE_RETRY_BACKOFF = env_int_list('TUBEGATE_RETRY_BACKOFF', [30, 60, 300])

# Hard wall-clock limit for one yt-dlp invocation, in seconds
TUBEGATE_JOB_TIMEOUT = env_int('TUBEGATE_JOB_TIMEOUT', 3600)

# Same video+format+IP within this many seconds is rejected
TUBEGATE_DEDUPE_WINDOW = env_int('TUBEGATE_DEDUPE_WINDOW', 300)

TUBEGATE_MAX_FILE_SIZE = env_int('TUBEGATE_MAX_FILE_SIZE', 1024 * 1024 * 1024)
TUBEGATE_MAX_DURATION = env_int('TUBEGATE_MAX_DURATION', 3600)

# Retention window for cleanup_downloads
TUBEGATE_CLEANUP_DAYS = env_int('TUBEGATE_CLEANUP_DAYS', 7)

LOG_LEVEL = os.environ.get('TUBEGATE_LOG_LEVEL', 'INFO').upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '[{asctime}] {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'downloads': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'huey': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
