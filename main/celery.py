"""
Celery configuration for the catalog import service.
"""
import os
from celery import Celery

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'main.settings.dev')

app = Celery('main')

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Picks up apps.core.tasks (ingestion + maintenance).
app.autodiscover_tasks()

# Periodic tasks are declared in CELERY_BEAT_SCHEDULE and synced into the
# django_celery_beat database scheduler.
app.conf.timezone = 'UTC'
