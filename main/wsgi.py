"""
WSGI config for the catalog import service.
"""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "main.settings.prod")

application = get_wsgi_application()
