"""Shared fixtures for the catalog import test suite."""

import csv
import io

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from apps.attributes.models import Attribute, AttributeDataType, Family, FamilyAttribute
from apps.products.models import Category
from apps.products.services import AttributeValueInput, ProductRecord, ProductService
from apps.tenants.models import Tenant

API_KEY = "test-api-key"
OTHER_API_KEY = "other-api-key"


@pytest.fixture(autouse=True)
def clear_cache():
    """Progress snapshots live in the cache; start every test empty."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def tenant(db):
    return Tenant.objects.create(name="Acme", api_key_hash=Tenant.hash_api_key(API_KEY))


@pytest.fixture
def other_tenant(db):
    return Tenant.objects.create(name="Globex", api_key_hash=Tenant.hash_api_key(OTHER_API_KEY))


@pytest.fixture
def make_family(tenant):
    """Create a family from (name, data_type, is_required) triples."""

    def _make(name, attributes, owner=None):
        owner = owner or tenant
        family = Family.objects.create(tenant=owner, name=name)
        for position, (attr_name, data_type, is_required) in enumerate(attributes):
            attribute, _ = Attribute.objects.get_or_create(
                tenant=owner, name=attr_name, defaults={"data_type": data_type}
            )
            FamilyAttribute.objects.create(
                family=family, attribute=attribute, is_required=is_required, position=position
            )
        return family

    return _make


@pytest.fixture
def electronics(make_family):
    """Electronics requires Voltage; Color is optional."""
    return make_family("Electronics", [
        ("Voltage", AttributeDataType.DECIMAL, True),
        ("Color", AttributeDataType.SHORT_TEXT, False),
    ])


@pytest.fixture
def shoes(make_family):
    return make_family("Shoes", [("size", AttributeDataType.SHORT_TEXT, False)])


@pytest.fixture
def category(tenant):
    return Category.objects.create(tenant=tenant, name="Gadgets")


@pytest.fixture
def make_csv():
    """Build CSV bytes from a header row and data rows."""

    def _make(header, *rows):
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(header)
        for row in rows:
            writer.writerow(row)
        return buffer.getvalue().encode("utf-8")

    return _make


@pytest.fixture
def api_client(tenant):
    client = APIClient()
    client.credentials(HTTP_X_API_KEY=API_KEY)
    return client


@pytest.fixture
def service(tenant):
    return ProductService(tenant)


@pytest.fixture
def make_product(tenant, service):
    """Upsert a product; values maps attribute name -> value and creates custom attributes on demand."""

    def _make(sku, name=None, family=None, values=None, **fields):
        family_slots = {}
        if family is not None:
            family_slots = {fa.attribute.name: fa for fa in family.family_attributes.select_related("attribute")}
        family_values, custom_values = [], []
        for attr_name, value in (values or {}).items():
            slot = family_slots.get(attr_name)
            if slot is not None:
                family_values.append(AttributeValueInput(slot.attribute_id, value, slot.pk))
            else:
                attribute, _ = Attribute.objects.get_or_create(tenant=tenant, name=attr_name)
                custom_values.append(AttributeValueInput(attribute.pk, value))
        record = ProductRecord(
            sku=sku,
            name=name or f"Product {sku}",
            family_id=family.pk if family is not None else None,
            family_values=family_values,
            custom_values=custom_values,
            **fields,
        )
        product, _ = service.upsert_product(record)
        return product

    return _make
