"""
ASGI config for the catalog import service.

Import progress is delivered over server-sent events, which benefit from an
ASGI server when many subscribers stay connected.
"""
import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "main.settings.prod")

application = get_asgi_application()
