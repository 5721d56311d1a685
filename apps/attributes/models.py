from django.db import models


class AttributeDataType(models.TextChoices):
    SHORT_TEXT = 'short_text', 'Short text'
    LONG_TEXT = 'long_text', 'Long text'
    INTEGER = 'integer', 'Integer'
    DECIMAL = 'decimal', 'Decimal'
    DATE = 'date', 'Date'
    BOOLEAN = 'boolean', 'Boolean'


class Attribute(models.Model):
    """
    A typed, tenant-scoped product attribute (e.g. "Voltage", "Color").
    Attributes are created on first encounter during import and never implicitly deleted.
    """
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        db_column='tenant_id',
        related_name='attributes'
    )
    name = models.CharField(max_length=255, help_text="Attribute name, unique per tenant")
    data_type = models.CharField(
        max_length=20,
        choices=AttributeDataType.choices,
        default=AttributeDataType.SHORT_TEXT,
    )
    default_value = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'attributes'
        verbose_name = 'Attribute'
        verbose_name_plural = 'Attributes'
        constraints = [
            models.UniqueConstraint(fields=['tenant', 'name'], name='unique_attribute_name_per_tenant'),
        ]

    def __str__(self):
        return f"{self.name} ({self.data_type})"


class Family(models.Model):
    """A named set of attributes that products of the same kind share."""
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        db_column='tenant_id',
        related_name='families'
    )
    name = models.CharField(max_length=255)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'families'
        verbose_name = 'Family'
        verbose_name_plural = 'Families'
        constraints = [
            models.UniqueConstraint(fields=['tenant', 'name'], name='unique_family_name_per_tenant'),
        ]

    def __str__(self):
        return self.name


class FamilyAttribute(models.Model):
    """
    Ordered membership of an Attribute in a Family.
    is_required drives the completeness status of products in the family.
    """
    family = models.ForeignKey(Family, on_delete=models.CASCADE, related_name='family_attributes')
    attribute = models.ForeignKey(Attribute, on_delete=models.CASCADE, related_name='family_links')
    is_required = models.BooleanField(default=False)
    position = models.PositiveIntegerField(default=0, help_text="Display order inside the family")

    class Meta:
        db_table = 'family_attributes'
        verbose_name = 'Family Attribute'
        verbose_name_plural = 'Family Attributes'
        ordering = ['position', 'id']
        constraints = [
            models.UniqueConstraint(fields=['family', 'attribute'], name='unique_attribute_per_family'),
        ]

    def __str__(self):
        flag = 'required' if self.is_required else 'optional'
        return f"{self.family_id}:{self.attribute_id} ({flag})"
