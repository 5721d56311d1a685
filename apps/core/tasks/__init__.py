from apps.core.tasks.ingestion import process_product_import, run_scheduled_import  # noqa: F401
from apps.core.tasks.maintenance import cleanup_expired_imports  # noqa: F401
