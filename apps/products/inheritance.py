"""
Parent/variant inheritance.

A variant takes its parent's family whenever the parent has one, and fills
the gaps in its own attribute values from the parent. Values the variant
already holds are never overwritten. Callers run these inside a transaction.
"""
import logging

from apps.core.exceptions import CatalogConsistencyError
from apps.products.models import Product, ProductAttribute
from apps.products.status import refresh_product_status, sync_family_attribute_links

logger = logging.getLogger(__name__)


def validate_parent_link(variant: Product, parent: Product) -> None:
    """Raise CatalogConsistencyError if parent cannot become variant's parent. Mutates nothing."""
    if parent.tenant_id != variant.tenant_id:
        raise CatalogConsistencyError("Parent product belongs to another tenant")
    if parent.pk == variant.pk:
        raise CatalogConsistencyError("A product cannot be its own parent")
    if parent.is_deleted:
        raise CatalogConsistencyError(f"Parent product {parent.sku} is deleted")
    if parent.is_variant:
        raise CatalogConsistencyError(
            f"Product {parent.sku} is itself a variant and cannot be a parent"
        )
    if variant.variants.exists():
        raise CatalogConsistencyError(
            f"Product {variant.sku} has variants and cannot become a variant"
        )


def merge_parent_attributes(variant: Product, parent: Product) -> int:
    """
    Copy parent values into the variant where the variant has none.
    Returns the number of attribute values created or filled.
    """
    own = {pa.attribute_id: pa for pa in ProductAttribute.objects.filter(product=variant)}
    changed = 0

    for inherited in ProductAttribute.objects.filter(product=parent):
        existing = own.get(inherited.attribute_id)
        if existing is None:
            ProductAttribute.objects.create(
                product=variant,
                attribute_id=inherited.attribute_id,
                value=inherited.value,
                family_attribute_id=inherited.family_attribute_id,
            )
            changed += 1
        elif not existing.has_value:
            existing.value = inherited.value
            if existing.family_attribute_id is None:
                existing.family_attribute_id = inherited.family_attribute_id
            existing.save(update_fields=['value', 'family_attribute', 'updated_at'])
            changed += 1
        elif existing.family_attribute_id is None and inherited.family_attribute_id is not None:
            existing.family_attribute_id = inherited.family_attribute_id
            existing.save(update_fields=['family_attribute', 'updated_at'])

    return changed


def inherit_from_parent(variant: Product, parent: Product) -> Product:
    """Apply the parent's family and attribute values to variant, then recompute its status."""
    if parent.family_id is not None and variant.family_id != parent.family_id:
        logger.info(f"Variant {variant.sku} family {variant.family_id} -> {parent.family_id} (from {parent.sku})")
        variant.family_id = parent.family_id
    variant.parent_product = parent
    variant.save()

    filled = merge_parent_attributes(variant, parent)
    sync_family_attribute_links(variant)
    refresh_product_status(variant)
    logger.debug(f"Merged {filled} attribute values from {parent.sku} into {variant.sku}")
    return variant


def cascade_family_change(parent: Product) -> int:
    """Re-run inheritance for every variant after the parent's family changed."""
    count = 0
    for variant in Product.objects.filter(parent_product=parent):
        inherit_from_parent(variant, parent)
        count += 1
    if count:
        logger.info(f"Cascaded family of {parent.sku} to {count} variants")
    return count


def unlink_variants(parent: Product) -> int:
    """Turn every variant of parent into a standalone product."""
    return Product.objects.filter(parent_product=parent).update(parent_product=None)
