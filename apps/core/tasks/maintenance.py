from celery import shared_task
from datetime import timedelta
import logging

logger = logging.getLogger(__name__)


@shared_task
def cleanup_expired_imports(days=None):
    """
    Delete finished product imports older than the retention window, along with
    any upload file still left in storage.
    """
    from django.core.files.storage import default_storage
    from django.utils import timezone
    from apps.ingestions.conf import import_setting
    from apps.ingestions.models import ProductImport

    days = days if days is not None else import_setting('IMPORT_RETENTION_DAYS')
    cutoff = timezone.now() - timedelta(days=days)

    try:
        expired = ProductImport.objects.filter(
            status__in=['completed', 'error'],
            last_activity__lt=cutoff,
        )
        files_deleted = 0
        for file_path in expired.exclude(file_path__isnull=True).values_list('file_path', flat=True):
            if file_path and default_storage.exists(file_path):
                default_storage.delete(file_path)
                files_deleted += 1

        deleted, _ = expired.delete()
        result = {'imports_deleted': deleted, 'files_deleted': files_deleted, 'cutoff': cutoff.isoformat()}
        logger.info(f"Cleanup completed: {result}")
        return result
    except Exception as e:
        logger.error(f"Cleanup failed: {str(e)}")
        raise
