"""Tests for tenant-scoped product storage operations."""

import pytest

from apps.attributes.models import Attribute, Family
from apps.core.exceptions import CatalogConsistencyError, ProductNotFoundError, SkuConflictError
from apps.products.models import Product, ProductAttribute, ProductStatus
from apps.products.services import AttributeValueInput, ProductRecord, ProductService


@pytest.mark.django_db
class TestUpsertProduct:

    def test_upsert_is_idempotent(self, service, electronics):
        voltage = electronics.family_attributes.get(attribute__name="Voltage")
        record = ProductRecord(
            sku="WIDG-000", name="Widget", family_id=electronics.pk,
            family_values=[AttributeValueInput(voltage.attribute_id, "220", voltage.pk)],
        )

        first, created = service.upsert_product(record)
        second, created_again = service.upsert_product(record)

        assert created is True
        assert created_again is False
        assert first.pk == second.pk
        assert Product.objects.filter(sku="WIDG-000").count() == 1
        assert ProductAttribute.objects.filter(product=first).count() == 1

    def test_upsert_keeps_fields_the_record_leaves_empty(self, service):
        service.upsert_product(ProductRecord(sku="WIDG-000", name="Widget", image_url="https://cdn.example.com/w.png"))
        product, _ = service.upsert_product(ProductRecord(sku="WIDG-000", name="Widget v2"))

        assert product.name == "Widget v2"
        assert product.image_url == "https://cdn.example.com/w.png"

    def test_upsert_restores_soft_deleted_product(self, service, make_product):
        original = make_product("WIDG-000")
        service.soft_delete_product(original.pk)

        product, created = service.upsert_product(ProductRecord(sku="WIDG-000", name="Back"))

        assert created is False
        assert product.pk == original.pk
        assert product.is_deleted is False

    def test_foreign_attribute_is_rejected(self, service, other_tenant):
        foreign = Attribute.objects.create(tenant=other_tenant, name="Secret")
        record = ProductRecord(sku="WIDG-000", name="Widget",
                               custom_values=[AttributeValueInput(foreign.pk, "x")])

        with pytest.raises(CatalogConsistencyError):
            service.upsert_product(record)
        assert not Product.objects.filter(sku="WIDG-000").exists()


@pytest.mark.django_db
class TestCreateProduct:

    def test_duplicate_sku_conflicts(self, service, make_product):
        make_product("WIDG-000")
        with pytest.raises(SkuConflictError, match='"WIDG-000" already exists'):
            service.create_product(ProductRecord(sku="WIDG-000", name="Again"))

    def test_family_of_other_tenant_is_rejected(self, service, other_tenant):
        foreign = Family.objects.create(tenant=other_tenant, name="Foreign")
        with pytest.raises(CatalogConsistencyError):
            service.create_product(ProductRecord(sku="WIDG-000", name="Widget", family_id=foreign.pk))

    def test_unknown_parent_sku_rolls_back(self, service):
        with pytest.raises(ProductNotFoundError):
            service.create_product(ProductRecord(sku="CHILD-01", name="Child", parent_sku="NOPE-000"))
        assert not Product.objects.filter(sku="CHILD-01").exists()

    def test_parent_sku_links_variant(self, service, make_product, electronics):
        parent = make_product("PARENT-1", family=electronics, values={"Voltage": "110"})

        variant = service.create_product(ProductRecord(sku="CHILD-01", name="Child", parent_sku="PARENT-1"))

        assert variant.parent_product_id == parent.pk
        assert variant.family_id == electronics.pk


@pytest.mark.django_db
class TestProductLifecycle:
    """Soft delete, restore and permanent delete."""

    def test_soft_deleted_product_is_hidden(self, service, make_product):
        product = make_product("WIDG-000")
        service.soft_delete_product(product.pk)

        assert service.find_by_sku("WIDG-000") is None
        with pytest.raises(ProductNotFoundError):
            service.get_product(product.pk)
        assert service.get_product(product.pk, include_deleted=True).deleted_at is not None

    def test_restore(self, service, make_product):
        product = make_product("WIDG-000")
        service.soft_delete_product(product.pk)

        restored = service.restore_product(product.pk)

        assert restored.is_deleted is False
        assert service.find_by_sku("WIDG-000").pk == product.pk

    def test_restore_conflicts_with_live_sku(self, service, make_product):
        product = make_product("WIDG-000")
        service.soft_delete_product(product.pk)
        Product.objects.create(tenant=service.tenant, sku="WIDG-000", name="Replacement")

        with pytest.raises(SkuConflictError, match="Cannot restore"):
            service.restore_product(product.pk)

    def test_permanent_delete_requires_soft_delete(self, service, make_product):
        product = make_product("WIDG-000")
        with pytest.raises(CatalogConsistencyError):
            service.permanently_delete_product(product.pk)

    def test_permanent_delete_unlinks_variants(self, service, make_product, electronics):
        parent = make_product("PARENT-1", family=electronics)
        variant = make_product("CHILD-01")
        service.set_parent(variant.pk, parent.pk)
        service.soft_delete_product(parent.pk)

        service.permanently_delete_product(parent.pk)

        variant.refresh_from_db()
        assert not Product.objects.filter(pk=parent.pk).exists()
        assert variant.parent_product_id is None
        assert variant.family_id == electronics.pk

    @pytest.mark.parametrize("product_id", ["not-a-uuid", "00000000-0000-0000-0000-000000000000"])
    def test_unknown_ids_are_not_found(self, service, product_id):
        with pytest.raises(ProductNotFoundError):
            service.get_product(product_id)

    def test_products_of_other_tenants_are_invisible(self, service, other_tenant):
        foreign, _ = ProductService(other_tenant).upsert_product(ProductRecord(sku="WIDG-000", name="Foreign"))
        with pytest.raises(ProductNotFoundError):
            service.get_product(foreign.pk)


@pytest.mark.django_db
class TestAttributeValues:

    def test_update_family_attribute_values(self, service, make_product, electronics):
        product = make_product("WIDG-000", family=electronics)
        voltage = Attribute.objects.get(name="Voltage")

        product = service.update_family_attribute_values(product.pk, [{"attribute_id": voltage.pk, "value": "230"}])

        assert product.status == ProductStatus.COMPLETE
        stored = ProductAttribute.objects.get(product=product, attribute=voltage)
        assert stored.value == "230"
        assert stored.family_attribute_id is not None

    def test_family_update_rejects_outside_attributes(self, service, make_product, electronics):
        product = make_product("WIDG-000", family=electronics)
        outside = Attribute.objects.create(tenant=product.tenant, name="Warranty")

        with pytest.raises(CatalogConsistencyError, match="not part of the product family"):
            service.update_family_attribute_values(product.pk, [{"attribute_id": outside.pk, "value": "1y"}])

    def test_family_update_requires_family(self, service, make_product):
        product = make_product("LOOSE-01")
        with pytest.raises(CatalogConsistencyError, match="has no family"):
            service.update_family_attribute_values(product.pk, [])

    def test_values_are_converted_to_attribute_type(self, service, make_product, electronics):
        product = make_product("WIDG-000", family=electronics)
        voltage = Attribute.objects.get(name="Voltage")

        with pytest.raises(CatalogConsistencyError, match="Voltage: Invalid value for type decimal"):
            service.update_attribute_values(product.pk, [{"attribute_id": voltage.pk, "value": "high"}])

    def test_clearing_required_value_makes_incomplete(self, service, make_product, electronics):
        product = make_product("WIDG-000", family=electronics, values={"Voltage": "220"})
        voltage = Attribute.objects.get(name="Voltage")

        product = service.update_attribute_values(product.pk, [{"attribute_id": voltage.pk, "value": ""}])

        assert product.status == ProductStatus.INCOMPLETE


@pytest.mark.django_db
class TestReadModel:

    def test_family_attribute_values(self, service, make_product, electronics):
        product = make_product("WIDG-001", family=electronics, values={"Color": "Red"})

        read_model = service.get_family_attribute_values(product.pk)

        assert read_model["family_name"] == "Electronics"
        assert read_model["status"] == ProductStatus.INCOMPLETE
        assert [a["attribute_name"] for a in read_model["required"]] == ["Voltage"]
        assert read_model["optional"][0]["value"] == "Red"
        assert read_model["missing_required"] == ["Voltage"]

    def test_read_model_without_family(self, service, make_product):
        product = make_product("LOOSE-01")
        read_model = service.get_family_attribute_values(product.pk)

        assert read_model["family_id"] is None
        assert read_model["required"] == [] and read_model["optional"] == []

    def test_export_product(self, service, make_product, electronics, category):
        parent = make_product("PARENT-1", family=electronics, values={"Voltage": "220"}, category_id=category.pk)
        variant = make_product("CHILD-01")
        service.set_parent(variant.pk, parent.pk)

        exported = service.export_product(parent.pk)

        assert exported["family"] == "Electronics"
        assert exported["category"] == "Gadgets"
        assert exported["variant_skus"] == ["CHILD-01"]
        assert exported["attributes"] == {"Voltage": "220"}
        assert service.export_product(variant.pk)["parent_sku"] == "PARENT-1"

    def test_export_products_keeps_request_order_and_skips_missing(self, service, make_product, other_tenant):
        first = make_product("WIDG-000")
        second = make_product("WIDG-001")
        deleted = make_product("WIDG-002")
        service.soft_delete_product(deleted.pk)
        foreign = ProductService(other_tenant).create_product(ProductRecord(sku="OTHR-000", name="Other"))

        exported = service.export_products([second.pk, deleted.pk, first.pk, foreign.pk, second.pk])

        assert [row["sku"] for row in exported] == ["WIDG-001", "WIDG-000"]

    def test_export_products_with_nothing_found(self, service, make_product):
        deleted = make_product("WIDG-000")
        service.soft_delete_product(deleted.pk)

        with pytest.raises(ProductNotFoundError):
            service.export_products([deleted.pk])


@pytest.mark.django_db
class TestUpdateProduct:

    def test_update_product_sku_conflict(self, service, make_product):
        make_product("WIDG-000")
        other = make_product("WIDG-001")

        with pytest.raises(SkuConflictError):
            service.update_product(other.pk, {"sku": "WIDG-000"})

    def test_update_product_fields(self, service, make_product, category):
        product = make_product("WIDG-000")

        product = service.update_product(product.pk, {"name": "Renamed", "category_id": category.pk})

        assert product.name == "Renamed"
        assert Product.objects.get(pk=product.pk).category_id == category.pk
