"""
Celery tasks for background product imports.
"""
from celery import shared_task
import logging

logger = logging.getLogger(__name__)


def _delete_upload(file_path):
    from django.core.files.storage import default_storage

    try:
        if file_path and default_storage.exists(file_path):
            default_storage.delete(file_path)
            logger.info(f"Deleted processed upload: {file_path}")
    except Exception as e:
        # The import result stands even if the file lingers; maintenance will retry.
        logger.error(f"Could not delete file {file_path}. Reason: {e}")


def _mark_failed(product_import, message):
    """Store the error on the import and publish it as the session's terminal snapshot."""
    from apps.ingestions.progress import STATUS_ERROR, ImportProgress, configured_tracker

    product_import.status = 'error'
    product_import.summary = {'error': message}
    product_import.save(update_fields=['status', 'summary', 'last_activity'])
    configured_tracker().publish(product_import.session_id, ImportProgress(status=STATUS_ERROR, message=message))


def _run_session(product_import, fetch):
    """
    Import the file returned by fetch() as (payload, filename, content_type)
    under the import's session id. Schema errors are returned as an error result,
    anything else is re-raised once the session is marked as failed.
    """
    from apps.core.exceptions import ImportSchemaError
    from apps.ingestions.importer import ProductImportService

    import_id = product_import.import_id
    product_import.status = 'processing'
    product_import.save(update_fields=['status', 'last_activity'])

    service = ProductImportService(product_import.tenant)
    try:
        payload, filename, content_type = fetch()
        summary = service.run_with_progress(
            product_import.session_id,
            payload,
            product_import.mapping,
            filename=filename,
            content_type=content_type,
        )
    except ImportSchemaError as e:
        logger.warning(f"Product import {import_id} rejected: {e}")
        _mark_failed(product_import, str(e))
        return {'import_id': str(import_id), 'session_id': product_import.session_id,
                'status': 'error', 'error': str(e)}
    except Exception as e:
        logger.error(f"Product import {import_id} failed: {str(e)}")
        _mark_failed(product_import, f"Import failed: {e}")
        raise

    product_import.status = 'completed'
    product_import.summary = summary.to_dict()
    product_import.save(update_fields=['status', 'summary', 'last_activity'])

    logger.info(f"Product import {import_id} completed: "
                f"{summary.success_count} succeeded, {summary.failed_count} failed")

    return {
        'import_id': str(import_id),
        'session_id': product_import.session_id,
        'total_rows': summary.total_rows,
        'success_count': summary.success_count,
        'failed_count': summary.failed_count,
        'status': product_import.status,
    }


@shared_task(bind=True, time_limit=1800, soft_time_limit=1740)
def process_product_import(self, import_id):
    """
    Run a queued product import and publish its progress under the import's session id.
    """
    from django.core.files.storage import default_storage
    from apps.ingestions.models import ProductImport

    try:
        product_import = ProductImport.objects.select_related('tenant').get(import_id=import_id)
    except ProductImport.DoesNotExist:
        logger.error(f"Product import {import_id} not found")
        raise

    def read_upload():
        with default_storage.open(product_import.file_path, 'rb') as handle:
            payload = handle.read()
        return payload, product_import.original_filename, product_import.content_type

    result = _run_session(product_import, read_upload)
    _delete_upload(product_import.file_path)
    return result


@shared_task(bind=True, time_limit=1800, soft_time_limit=1740)
def run_scheduled_import(self, schedule_id, import_id=None):
    """
    Fetch a scheduled import's source URL and import it. Beat passes only the
    schedule id; a manual run passes the ProductImport it already opened.
    """
    from django.utils import timezone
    from apps.ingestions.models import ProductImport, ScheduledImport
    from apps.ingestions.scheduling import download_source, start_scheduled_run

    try:
        scheduled = ScheduledImport.objects.select_related('tenant').get(schedule_id=schedule_id)
    except ScheduledImport.DoesNotExist:
        logger.warning(f"Scheduled import {schedule_id} no longer exists, skipping run")
        return None

    if import_id is None:
        product_import = start_scheduled_run(scheduled)
    else:
        product_import = ProductImport.objects.select_related('tenant').get(import_id=import_id)

    scheduled.last_run = timezone.now()
    scheduled.status = 'processing'
    scheduled.save(update_fields=['last_run', 'status', 'updated_at'])

    logger.info(f"Running scheduled import {schedule_id} from {scheduled.source_url}")
    try:
        return _run_session(product_import, lambda: download_source(scheduled.source_url))
    finally:
        scheduled.status = product_import.status
        scheduled.last_summary = product_import.summary
        scheduled.save(update_fields=['status', 'last_summary', 'updated_at'])
