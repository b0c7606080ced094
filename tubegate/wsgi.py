"""
WSGI config for tubegate project.

Exposes the WSGI callable as a module-level variable named ``application``.
Run the huey consumer alongside it so queued downloads get processed:

    python manage.py run_huey
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'tubegate.settings')

application = get_wsgi_application()
