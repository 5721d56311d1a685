"""
Derived, family-dependent product state: completeness status and the
family_attribute links on attribute values.
"""
import logging
from typing import Dict, Set

from apps.attributes.models import FamilyAttribute
from apps.products.models import Product, ProductAttribute, ProductStatus

logger = logging.getLogger(__name__)


def _required_attribute_ids(family_id) -> Set[int]:
    return set(
        FamilyAttribute.objects
        .filter(family_id=family_id, is_required=True)
        .values_list('attribute_id', flat=True)
    )


def calculate_product_status(product: Product) -> str:
    """
    complete iff the product has a family and every required attribute of that
    family has a non-empty value on the product. A family without required
    attributes is complete. Custom attributes are ignored.
    """
    if product.family_id is None:
        return ProductStatus.INCOMPLETE

    required_ids = _required_attribute_ids(product.family_id)
    if not required_ids:
        return ProductStatus.COMPLETE

    filled = {
        attribute_id
        for attribute_id, value in ProductAttribute.objects
        .filter(product=product, attribute_id__in=required_ids)
        .values_list('attribute_id', 'value')
        if value is not None and value.strip() != ''
    }
    return ProductStatus.COMPLETE if required_ids <= filled else ProductStatus.INCOMPLETE


def refresh_product_status(product: Product) -> str:
    """Recompute and persist the status. Returns the new status."""
    new_status = calculate_product_status(product)
    if product.status != new_status:
        Product.objects.filter(pk=product.pk).update(status=new_status)
        logger.debug(f"Product {product.sku} status {product.status} -> {new_status}")
        product.status = new_status
    return new_status


def sync_family_attribute_links(product: Product) -> None:
    """Point every attribute value at its slot in the product's current family, or clear it."""
    slots: Dict[int, int] = {}
    if product.family_id is not None:
        slots = dict(
            FamilyAttribute.objects
            .filter(family_id=product.family_id)
            .values_list('attribute_id', 'id')
        )
    for value in ProductAttribute.objects.filter(product=product):
        target = slots.get(value.attribute_id)
        if value.family_attribute_id != target:
            value.family_attribute_id = target
            value.save(update_fields=['family_attribute', 'updated_at'])
