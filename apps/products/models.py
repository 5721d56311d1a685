import uuid
from django.db import models
from django.db.models import Q


class ProductStatus(models.TextChoices):
    COMPLETE = 'complete', 'Complete'
    INCOMPLETE = 'incomplete', 'Incomplete'


class Category(models.Model):
    """Tenant-scoped product category, referenced by name from imports."""
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        db_column='tenant_id',
        related_name='categories'
    )
    name = models.CharField(max_length=255)

    class Meta:
        db_table = 'categories'
        verbose_name = 'Category'
        verbose_name_plural = 'Categories'
        constraints = [
            models.UniqueConstraint(fields=['tenant', 'name'], name='unique_category_name_per_tenant'),
        ]

    def __str__(self):
        return self.name


class Product(models.Model):
    """
    Product model. A product with a parent_product is a variant of that parent;
    variants inherit the parent's family and fill gaps from the parent's attribute values.
    status is derived from the family's required attributes and never set directly.
    """
    product_id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        db_column='tenant_id',
        related_name='products'
    )
    sku = models.CharField(max_length=40, help_text="Stock Keeping Unit identifier (4-40 chars)")
    name = models.CharField(max_length=100, help_text="Product name")
    image_url = models.URLField(max_length=2048, null=True, blank=True)
    product_link = models.URLField(max_length=2048, null=True, blank=True)
    sub_images = models.JSONField(default=list, blank=True, help_text="Additional image URLs")
    category = models.ForeignKey(
        Category,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='products'
    )
    family = models.ForeignKey(
        'attributes.Family',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='products'
    )
    parent_product = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='variants'
    )
    status = models.CharField(
        max_length=20,
        choices=ProductStatus.choices,
        default=ProductStatus.INCOMPLETE,
    )
    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, help_text="Product creation timestamp")
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'products'
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        indexes = [
            models.Index(fields=['tenant', 'sku'], name='products_tenant_sku_idx'),
            models.Index(fields=['tenant', 'is_deleted'], name='products_tenant_deleted_idx'),
            models.Index(fields=['family'], name='products_family_idx'),
            models.Index(fields=['parent_product'], name='products_parent_idx'),
        ]
        constraints = [
            # Soft-deleted rows keep their SKU so they can be restored later.
            models.UniqueConstraint(
                fields=['tenant', 'sku'],
                condition=Q(is_deleted=False),
                name='unique_live_tenant_sku'
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.sku})"

    @property
    def is_variant(self) -> bool:
        return self.parent_product_id is not None


class ProductAttribute(models.Model):
    """
    One attribute value on a product. family_attribute is set when the value
    fills a slot of the product's family; custom attributes leave it empty.
    """
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='attribute_values')
    attribute = models.ForeignKey('attributes.Attribute', on_delete=models.CASCADE, related_name='product_values')
    value = models.TextField(null=True, blank=True)
    family_attribute = models.ForeignKey(
        'attributes.FamilyAttribute',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='product_values'
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'product_attributes'
        verbose_name = 'Product Attribute'
        verbose_name_plural = 'Product Attributes'
        constraints = [
            models.UniqueConstraint(fields=['product', 'attribute'], name='unique_attribute_per_product'),
        ]

    def __str__(self):
        return f"{self.product_id}:{self.attribute_id}={self.value!r}"

    @property
    def has_value(self) -> bool:
        return self.value is not None and self.value.strip() != ''
