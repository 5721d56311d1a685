import hashlib
import uuid
from django.db import models


class Tenant(models.Model):
    """
    Tenant model representing multi-tenant architecture.
    Every catalog row (attributes, families, products) is owned by exactly one tenant.
    """
    tenant_id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.TextField(max_length=255, help_text="Tenant name")
    api_key_hash = models.TextField(max_length=255, help_text="SHA-256 of the tenant API key")
    created_at = models.DateTimeField(auto_now_add=True, help_text="Tenant creation timestamp")

    class Meta:
        db_table = 'tenants'
        verbose_name = 'Tenant'
        verbose_name_plural = 'Tenants'
        indexes = [
            models.Index(fields=['created_at'], name='tenants_created_at_idx'),
            models.Index(fields=['api_key_hash'], name='tenants_api_key_hash_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.tenant_id})"

    @staticmethod
    def hash_api_key(api_key: str) -> str:
        return hashlib.sha256(api_key.encode()).hexdigest()
