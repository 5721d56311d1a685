import uuid
from django.db import models


class ProductImport(models.Model):
    """
    ProductImport model representing one uploaded catalog spreadsheet.
    The session_id is handed to the client to follow progress; the summary is
    stored once the background import settles.
    """
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('processing', 'Processing'),
        ('completed', 'Completed'),
        ('error', 'Error'),
    ]

    import_id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        db_column='tenant_id',
        related_name='product_imports'
    )
    session_id = models.CharField(unique=True, max_length=64, help_text="Opaque progress session identifier")
    status = models.CharField(max_length=50, choices=STATUS_CHOICES, default='pending')
    original_filename = models.TextField(null=True, blank=True)
    file_path = models.TextField(null=True, blank=True, help_text="Path to the uploaded file in default storage")
    content_type = models.TextField(null=True, blank=True, help_text="MIME type of the uploaded file")
    mapping = models.JSONField(default=dict, blank=True, help_text="Field name -> column header mapping")
    summary = models.JSONField(default=dict, blank=True, help_text="Import result once finished")
    created_at = models.DateTimeField(auto_now_add=True, help_text="Import creation timestamp")
    last_activity = models.DateTimeField(auto_now=True, help_text="Last activity timestamp")

    class Meta:
        db_table = 'product_imports'
        verbose_name = 'Product Import'
        verbose_name_plural = 'Product Imports'
        indexes = [
            models.Index(fields=['tenant', 'status'], name='product_imports_tenant_st_idx'),
            models.Index(fields=['created_at'], name='product_imports_created_idx'),
        ]

    def __str__(self):
        return f"Import {self.session_id} ({self.status})"


class ScheduledImport(models.Model):
    """
    A product file fetched from a URL and imported on a cron schedule.
    The schedule itself lives in django_celery_beat as a PeriodicTask named
    periodic_task_name; every run is recorded as a ProductImport.
    """
    STATUS_CHOICES = ProductImport.STATUS_CHOICES

    schedule_id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        db_column='tenant_id',
        related_name='scheduled_imports'
    )
    name = models.CharField(max_length=255, blank=True, default='')
    description = models.TextField(blank=True, default='')
    source_url = models.URLField(max_length=2048, help_text="CSV or XLSX file fetched on every run")
    cron_expression = models.CharField(max_length=255, help_text="minute hour day-of-month month day-of-week")
    mapping = models.JSONField(default=dict, blank=True, help_text="Field name -> column header mapping")
    status = models.CharField(max_length=50, choices=STATUS_CHOICES, default='pending')
    periodic_task_name = models.CharField(max_length=200, unique=True)
    last_run = models.DateTimeField(null=True, blank=True)
    last_session_id = models.CharField(max_length=64, null=True, blank=True)
    last_summary = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'scheduled_product_imports'
        verbose_name = 'Scheduled Product Import'
        verbose_name_plural = 'Scheduled Product Imports'
        indexes = [
            models.Index(fields=['tenant', 'created_at'], name='sched_imports_tenant_idx'),
        ]

    def __str__(self):
        return f"Scheduled import {self.name or self.schedule_id} ({self.cron_expression})"
