"""
Cron-scheduled imports of product files published at a URL.

Each ScheduledImport owns one django_celery_beat PeriodicTask that calls
run_scheduled_import with the schedule id. Every run is recorded as a
ProductImport session, so its progress is followed like an uploaded import.
"""
import json
import logging
import os
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

import requests
from celery.schedules import ParseException, crontab
from django.db import transaction
from django_celery_beat.models import CrontabSchedule, PeriodicTask

from apps.core.exceptions import ImportSchemaError, ScheduleError
from apps.ingestions.conf import import_setting
from apps.ingestions.mapping import REQUIRED_FIELDS, parse_mapping
from apps.ingestions.models import ProductImport, ScheduledImport
from apps.ingestions.progress import configured_tracker, new_session_id
from apps.ingestions.row_validator import is_valid_url

logger = logging.getLogger(__name__)

SCHEDULED_IMPORT_TASK = 'apps.core.tasks.ingestion.run_scheduled_import'
CRON_FIELDS = ('minute', 'hour', 'day_of_month', 'month_of_year', 'day_of_week')


def parse_cron_expression(expression: str) -> Dict[str, str]:
    """Split a five-field cron expression into CrontabSchedule fields."""
    fields = (expression or '').split()
    if len(fields) != len(CRON_FIELDS):
        raise ScheduleError(
            f'Cron expression "{expression}" must have 5 fields: minute hour day-of-month month day-of-week'
        )
    parts = dict(zip(CRON_FIELDS, fields))
    try:
        crontab(**parts)
    except (ValueError, ParseException) as e:
        raise ScheduleError(f'Invalid cron expression "{expression}": {e}')
    return parts


def schedule_import(tenant, source_url: str, cron_expression: str, mapping,
                    name: str = '', description: str = '') -> ScheduledImport:
    """Validate and register a scheduled import with the beat scheduler."""
    if not source_url or not is_valid_url(source_url):
        raise ImportSchemaError("source_url must be a valid URL")
    parsed_mapping = parse_mapping(mapping)
    for field_name in REQUIRED_FIELDS:
        if field_name not in parsed_mapping:
            raise ImportSchemaError(f'Field "{field_name}" must be mapped to a column')
    parts = parse_cron_expression(cron_expression)

    with transaction.atomic():
        crontab_schedule, _ = CrontabSchedule.objects.get_or_create(**parts)
        scheduled = ScheduledImport(
            tenant=tenant,
            name=name or '',
            description=description or '',
            source_url=source_url,
            cron_expression=' '.join(parts[f] for f in CRON_FIELDS),
            mapping=parsed_mapping,
        )
        scheduled.periodic_task_name = f"product-import-{scheduled.schedule_id}"
        scheduled.save()
        PeriodicTask.objects.create(
            name=scheduled.periodic_task_name,
            task=SCHEDULED_IMPORT_TASK,
            crontab=crontab_schedule,
            args=json.dumps([str(scheduled.schedule_id)]),
            description=f"Product import from {source_url} for tenant {tenant.pk}",
        )

    logger.info(f"Scheduled product import {scheduled.schedule_id} for tenant {tenant.pk} "
                f"with cron '{scheduled.cron_expression}'")
    return scheduled


def cancel_scheduled_import(scheduled: ScheduledImport) -> None:
    with transaction.atomic():
        PeriodicTask.objects.filter(name=scheduled.periodic_task_name).delete()
        scheduled.delete()
    logger.info(f"Cancelled scheduled product import {scheduled.schedule_id}")


def start_scheduled_run(scheduled: ScheduledImport) -> ProductImport:
    """Open the ProductImport session one run of scheduled is recorded under."""
    session_id = new_session_id()
    product_import = ProductImport.objects.create(
        tenant=scheduled.tenant,
        session_id=session_id,
        status='pending',
        original_filename=scheduled.source_url,
        mapping=scheduled.mapping,
    )
    scheduled.last_session_id = session_id
    scheduled.save(update_fields=['last_session_id', 'updated_at'])
    configured_tracker().start(session_id, message='Scheduled import queued')
    return product_import


def download_source(url: str) -> Tuple[bytes, Optional[str], Optional[str]]:
    """
    Fetch a scheduled import's file. Returns (payload, filename, content_type).
    Network failures, HTTP errors and oversized files raise ImportSchemaError.
    """
    max_bytes = import_setting('MAX_UPLOAD_BYTES')
    chunks = []
    size = 0
    try:
        with requests.get(url, timeout=import_setting('DOWNLOAD_TIMEOUT_SECONDS'), stream=True) as response:
            response.raise_for_status()
            content_type = (response.headers.get('Content-Type') or '').split(';')[0].strip() or None
            for chunk in response.iter_content(chunk_size=64 * 1024):
                size += len(chunk)
                if size > max_bytes:
                    raise ImportSchemaError(f"Source file too large (max {max_bytes} bytes)")
                chunks.append(chunk)
    except requests.RequestException as e:
        raise ImportSchemaError(f"Could not download {url}: {e}")

    filename = os.path.basename(urlparse(url).path) or None
    logger.info(f"Downloaded {size} bytes from {url}")
    return b''.join(chunks), filename, content_type
