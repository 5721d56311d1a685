from django.conf import settings

DEFAULTS = {
    'BATCH_SIZE': 50,
    'MAX_WORKERS': 4,
    'FAMILY_CACHE_TTL_SECONDS': 300,
    'PROGRESS_RETENTION_SECONDS': 300,
    'PROGRESS_ACTIVE_TIMEOUT_SECONDS': 3600,
    'PROGRESS_POLL_INTERVAL_SECONDS': 0.5,
    'MAX_UPLOAD_BYTES': 20 * 1024 * 1024,
    'IMPORT_RETENTION_DAYS': 30,
    'DOWNLOAD_TIMEOUT_SECONDS': 30,
}


def import_setting(name: str):
    """Read a PRODUCT_IMPORT setting, falling back to the built-in default."""
    return getattr(settings, 'PRODUCT_IMPORT', {}).get(name, DEFAULTS[name])
