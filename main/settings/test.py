"""
Test settings for the catalog import service.
"""

import tempfile
from .base import *

DEBUG = False
SECRET_KEY = "test-secret-key"
ALLOWED_HOSTS = ["testserver", "localhost"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "catalog-tests",
    }
}

MEDIA_ROOT = tempfile.mkdtemp(prefix="catalog-media-")
STATICFILES_DIRS = []

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

# Upserts stay on the test thread so they share the test transaction.
PRODUCT_IMPORT = dict(PRODUCT_IMPORT, MAX_WORKERS=1, BATCH_SIZE=2, PROGRESS_POLL_INTERVAL_SECONDS=0)

# No log files during tests.
LOGGING["handlers"].pop("file", None)
LOGGING["loggers"]["django"]["handlers"] = ["console"]
LOGGING["loggers"]["django"]["level"] = "WARNING"
LOGGING["loggers"]["apps"]["handlers"] = ["console"]
LOGGING["loggers"]["apps"]["level"] = "WARNING"
