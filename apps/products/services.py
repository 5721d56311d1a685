"""
Tenant-scoped product storage operations.

Every method is scoped by the tenant the service was built with; the tenant is
never taken from imported data. Mutations run in a transaction and recompute
the derived completeness status before returning.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from apps.attributes.models import Attribute, Family, FamilyAttribute
from apps.core.exceptions import (
    CatalogConsistencyError,
    ProductNotFoundError,
    SkuConflictError,
)
from apps.ingestions.type_inference import ValueConversionError, convert_value
from apps.products.inheritance import (
    cascade_family_change,
    inherit_from_parent,
    unlink_variants,
    validate_parent_link,
)
from apps.products.models import Category, Product, ProductAttribute
from apps.products.status import refresh_product_status, sync_family_attribute_links

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('name', 'image_url', 'product_link', 'sub_images', 'category_id')


@dataclass
class AttributeValueInput:
    attribute_id: int
    value: Optional[str]
    family_attribute_id: Optional[int] = None


@dataclass
class ProductRecord:
    """A validated product ready to be written."""
    sku: str
    name: str
    row_number: Optional[int] = None
    product_link: Optional[str] = None
    image_url: Optional[str] = None
    sub_images: List[str] = field(default_factory=list)
    category_id: Optional[int] = None
    family_id: Optional[int] = None
    parent_sku: Optional[str] = None
    family_values: List[AttributeValueInput] = field(default_factory=list)
    custom_values: List[AttributeValueInput] = field(default_factory=list)


class ProductService:

    def __init__(self, tenant):
        self.tenant = tenant

    # Lookups

    def _products(self):
        return Product.objects.filter(tenant=self.tenant)

    def get_product(self, product_id, include_deleted: bool = False) -> Product:
        qs = self._products()
        if not include_deleted:
            qs = qs.filter(is_deleted=False)
        try:
            return qs.get(pk=product_id)
        except (Product.DoesNotExist, ValueError, DjangoValidationError):
            raise ProductNotFoundError(f"Product {product_id} not found")

    def find_by_sku(self, sku: str) -> Optional[Product]:
        return self._products().filter(sku=sku, is_deleted=False).first()

    def find_attribute(self, name: str) -> Optional[Attribute]:
        return Attribute.objects.filter(tenant=self.tenant, name__iexact=name).first()

    def get_or_create_attribute(self, name: str, data_type: str) -> Tuple[Attribute, bool]:
        existing = self.find_attribute(name)
        if existing:
            return existing, False
        return Attribute.objects.get_or_create(tenant=self.tenant, name=name, defaults={'data_type': data_type})

    def find_family(self, name: str) -> Optional[Family]:
        return (
            Family.objects
            .filter(tenant=self.tenant, name__iexact=name)
            .prefetch_related('family_attributes__attribute')
            .first()
        )

    def list_variants(self, parent: Product) -> List[Product]:
        return list(self._products().filter(parent_product=parent, is_deleted=False).order_by('sku'))

    # Writes

    def upsert_product_attribute(self, product: Product, attribute_id: int, value: Optional[str],
                                 family_attribute_id: Optional[int] = None) -> ProductAttribute:
        product_attribute, created = ProductAttribute.objects.update_or_create(
            product=product,
            attribute_id=attribute_id,
            defaults={'value': value, 'family_attribute_id': family_attribute_id},
        )
        return product_attribute

    def _check_attribute_ownership(self, attribute_ids) -> None:
        attribute_ids = set(attribute_ids)
        if not attribute_ids:
            return
        owned = set(
            Attribute.objects.filter(tenant=self.tenant, pk__in=attribute_ids).values_list('pk', flat=True)
        )
        missing = attribute_ids - owned
        if missing:
            raise CatalogConsistencyError(f"Attributes {sorted(missing)} do not belong to this tenant")

    def upsert_product(self, record: ProductRecord) -> Tuple[Product, bool]:
        """
        Create or update the product owning record.sku. A soft-deleted product
        with the same SKU is restored instead of creating a duplicate.
        Returns (product, created).
        """
        values = record.family_values + record.custom_values
        self._check_attribute_ownership(v.attribute_id for v in values)

        with transaction.atomic():
            product = self._products().select_for_update().filter(sku=record.sku, is_deleted=False).first()
            created = False
            if product is None:
                product = (
                    self._products().select_for_update()
                    .filter(sku=record.sku, is_deleted=True)
                    .order_by('-deleted_at')
                    .first()
                )
                if product is not None:
                    logger.info(f"Restoring soft-deleted product {record.sku} on upsert")
                    product.is_deleted = False
                    product.deleted_at = None
            if product is None:
                product = Product(tenant=self.tenant, sku=record.sku)
                created = True

            previous_family = product.family_id
            product.name = record.name
            if record.product_link is not None:
                product.product_link = record.product_link
            if record.image_url is not None:
                product.image_url = record.image_url
            if record.sub_images:
                product.sub_images = record.sub_images
            if record.category_id is not None:
                product.category_id = record.category_id
            if record.family_id is not None:
                product.family_id = record.family_id
            product.save()

            for value in values:
                self.upsert_product_attribute(product, value.attribute_id, value.value, value.family_attribute_id)

            if product.parent_product_id is not None:
                inherit_from_parent(product, product.parent_product)
            else:
                sync_family_attribute_links(product)
                refresh_product_status(product)

            if not created and product.family_id != previous_family:
                cascade_family_change(product)

        return product, created

    def create_product(self, record: ProductRecord, update_existing: bool = False) -> Product:
        if not update_existing and self.find_by_sku(record.sku):
            raise SkuConflictError(record.sku)
        if record.family_id is not None and not Family.objects.filter(tenant=self.tenant, pk=record.family_id).exists():
            raise CatalogConsistencyError(f"Family {record.family_id} not found")
        if record.category_id is not None and not Category.objects.filter(tenant=self.tenant, pk=record.category_id).exists():
            raise CatalogConsistencyError(f"Category {record.category_id} not found")
        with transaction.atomic():
            product, _ = self.upsert_product(record)
            if record.parent_sku:
                parent = self.find_by_sku(record.parent_sku)
                if parent is None:
                    raise ProductNotFoundError(f'Parent product with SKU "{record.parent_sku}" not found')
                product = self.set_parent(product.pk, parent.pk)
        return product

    def set_parent(self, product_id, parent_id=None) -> Product:
        """
        Make the product a variant of parent_id, or a standalone product when
        parent_id is None. Consistency violations raise before anything is written.
        """
        with transaction.atomic():
            product = self._products().select_for_update().filter(is_deleted=False, pk=product_id).first()
            if product is None:
                raise ProductNotFoundError(f"Product {product_id} not found")

            if parent_id is None:
                if product.parent_product_id is not None:
                    product.parent_product = None
                    product.save(update_fields=['parent_product', 'updated_at'])
                return product

            parent = self._products().select_for_update().filter(pk=parent_id).first()
            if parent is None:
                raise ProductNotFoundError(f"Parent product {parent_id} not found")
            validate_parent_link(product, parent)
            return inherit_from_parent(product, parent)

    def update_product(self, product_id, changes: Dict) -> Product:
        with transaction.atomic():
            product = self._products().select_for_update().filter(is_deleted=False, pk=product_id).first()
            if product is None:
                raise ProductNotFoundError(f"Product {product_id} not found")

            if 'sku' in changes and changes['sku'] != product.sku:
                conflict = self._products().filter(sku=changes['sku'], is_deleted=False).exclude(pk=product.pk)
                if conflict.exists():
                    raise SkuConflictError(changes['sku'])
                product.sku = changes['sku']

            category_id = changes.get('category_id')
            if category_id is not None and not Category.objects.filter(tenant=self.tenant, pk=category_id).exists():
                raise CatalogConsistencyError(f"Category {category_id} not found")

            for name in UPDATABLE_FIELDS:
                if name in changes:
                    setattr(product, name, changes[name])

            family_changed = False
            if 'family_id' in changes and changes['family_id'] != product.family_id:
                family_id = changes['family_id']
                if family_id is not None and not Family.objects.filter(tenant=self.tenant, pk=family_id).exists():
                    raise CatalogConsistencyError(f"Family {family_id} not found")
                parent = product.parent_product
                if parent is not None and parent.family_id is not None and parent.family_id != family_id:
                    raise CatalogConsistencyError(
                        f"Variant {product.sku} inherits family from {parent.sku} and cannot change it"
                    )
                product.family_id = family_id
                family_changed = True

            product.save()
            sync_family_attribute_links(product)
            refresh_product_status(product)

            if family_changed:
                cascade_family_change(product)

        if 'parent_product_id' in changes:
            product = self.set_parent(product.pk, changes['parent_product_id'])
        return product

    def soft_delete_product(self, product_id) -> Product:
        product = self.get_product(product_id)
        product.is_deleted = True
        product.deleted_at = timezone.now()
        product.save(update_fields=['is_deleted', 'deleted_at', 'updated_at'])
        logger.info(f"Soft-deleted product {product.sku}")
        return product

    def restore_product(self, product_id) -> Product:
        product = self.get_product(product_id, include_deleted=True)
        if not product.is_deleted:
            return product
        if self.find_by_sku(product.sku):
            raise SkuConflictError(
                product.sku,
                f'Cannot restore: another product with SKU "{product.sku}" already exists',
            )
        product.is_deleted = False
        product.deleted_at = None
        product.save(update_fields=['is_deleted', 'deleted_at', 'updated_at'])
        logger.info(f"Restored product {product.sku}")
        return product

    def permanently_delete_product(self, product_id) -> None:
        """Remove a soft-deleted product for good. Its variants become standalone first."""
        with transaction.atomic():
            product = self.get_product(product_id, include_deleted=True)
            if not product.is_deleted:
                raise CatalogConsistencyError("Product must be soft-deleted before permanent deletion")
            unlinked = unlink_variants(product)
            if unlinked:
                logger.info(f"Unlinked {unlinked} variants from {product.sku} before deletion")
            product.delete()
        logger.info(f"Permanently deleted product {product_id}")

    def _write_values(self, product: Product, values: List[Dict], family_only: bool) -> Product:
        slots = {}
        if product.family_id is not None:
            slots = {
                fa.attribute_id: fa
                for fa in FamilyAttribute.objects.filter(family_id=product.family_id).select_related('attribute')
            }

        attribute_ids = [item.get('attribute_id') for item in values]
        self._check_attribute_ownership(a for a in attribute_ids if a is not None)
        attributes = Attribute.objects.in_bulk([a for a in attribute_ids if a is not None])

        with transaction.atomic():
            for item in values:
                attribute = attributes.get(item.get('attribute_id'))
                if attribute is None:
                    raise CatalogConsistencyError(f"Unknown attribute {item.get('attribute_id')}")
                slot = slots.get(attribute.pk)
                if family_only and slot is None:
                    raise CatalogConsistencyError(
                        f'Attribute "{attribute.name}" is not part of the product family'
                    )
                raw = item.get('value')
                value = None
                if raw is not None and str(raw).strip() != '':
                    try:
                        value = convert_value(raw, attribute.data_type)
                    except ValueConversionError as e:
                        raise CatalogConsistencyError(f'{attribute.name}: {e}')
                self.upsert_product_attribute(product, attribute.pk, value, slot.pk if slot else None)
            refresh_product_status(product)
        return product

    def update_attribute_values(self, product_id, values: List[Dict]) -> Product:
        """values: [{'attribute_id': ..., 'value': ...}]; empty values clear the attribute."""
        return self._write_values(self.get_product(product_id), values, family_only=False)

    def update_family_attribute_values(self, product_id, values: List[Dict]) -> Product:
        product = self.get_product(product_id)
        if product.family_id is None:
            raise CatalogConsistencyError(f"Product {product.sku} has no family")
        return self._write_values(product, values, family_only=True)

    # Reads

    def get_family_attribute_values(self, product_id) -> Dict:
        """Required and optional family attributes with the product's current values."""
        product = self.get_product(product_id)
        values = {pa.attribute_id: pa.value for pa in ProductAttribute.objects.filter(product=product)}
        read_model = {
            'product_id': str(product.pk),
            'sku': product.sku,
            'family_id': product.family_id,
            'family_name': None,
            'status': product.status,
            'required': [],
            'optional': [],
            'missing_required': [],
        }
        if product.family_id is None:
            return read_model

        family = product.family
        read_model['family_name'] = family.name
        for fa in FamilyAttribute.objects.filter(family=family).select_related('attribute'):
            value = values.get(fa.attribute_id)
            has_value = value is not None and value.strip() != ''
            entry = {
                'attribute_id': fa.attribute_id,
                'attribute_name': fa.attribute.name,
                'family_attribute_id': fa.pk,
                'data_type': fa.attribute.data_type,
                'value': value,
                'has_value': has_value,
            }
            if fa.is_required:
                read_model['required'].append(entry)
                if not has_value:
                    read_model['missing_required'].append(fa.attribute.name)
            else:
                read_model['optional'].append(entry)
        return read_model

    def export_product(self, product_id) -> Dict:
        """Flat product view consumed by marketplace connectors."""
        product = self.get_product(product_id)
        attributes = {}
        for pa in ProductAttribute.objects.filter(product=product).select_related('attribute'):
            attributes[pa.attribute.name] = pa.value
        return {
            'product_id': str(product.pk),
            'sku': product.sku,
            'name': product.name,
            'status': product.status,
            'image_url': product.image_url,
            'product_link': product.product_link,
            'sub_images': product.sub_images,
            'category': product.category.name if product.category_id else None,
            'family': product.family.name if product.family_id else None,
            'parent_sku': product.parent_product.sku if product.parent_product_id else None,
            'variant_skus': [v.sku for v in self.list_variants(product)],
            'attributes': attributes,
            'updated_at': product.updated_at.isoformat() if product.updated_at else None,
        }

    def export_products(self, product_ids) -> List[Dict]:
        """export_product() for each live product among product_ids, in request order."""
        found = {
            str(p.pk): p for p in self._products().filter(pk__in=product_ids, is_deleted=False)
        }
        ordered = dict.fromkeys(str(pid) for pid in product_ids)
        exported = [self.export_product(found[pid].pk) for pid in ordered if pid in found]
        if not exported:
            raise ProductNotFoundError("No products found with the provided IDs")
        logger.info(f"Exported {len(exported)} of {len(product_ids)} requested products for tenant {self.tenant.pk}")
        return exported
