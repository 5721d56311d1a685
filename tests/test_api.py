"""HTTP tests for the product and product import endpoints."""

import csv
import io
import json

import pytest
from django.core.cache import cache
from django.core.files.uploadedfile import SimpleUploadedFile
from django_celery_beat.models import PeriodicTask
from rest_framework.test import APIClient

from apps.attributes.models import Attribute
from apps.ingestions.models import ProductImport, ScheduledImport
from apps.products.models import Product, ProductStatus


def import_url(tenant, suffix=""):
    return f"/api/v1/tenants/{tenant.tenant_id}/products/import/{suffix}"


def product_url(tenant, product=None, suffix=""):
    base = f"/api/v1/tenants/{tenant.tenant_id}/products/"
    if product is None:
        return base
    return f"{base}{product.pk}/{suffix}"


def upload(payload, name="products.csv"):
    return SimpleUploadedFile(name, payload, content_type="text/csv")


@pytest.mark.django_db
class TestTenantAuthentication:

    def test_missing_key(self, tenant):
        response = APIClient().get(product_url(tenant) + "00000000-0000-0000-0000-000000000000/")
        assert response.status_code == 401
        assert response.json() == {"error": "X-API-Key header required"}

    def test_invalid_key(self, api_client, tenant):
        api_client.credentials(HTTP_X_API_KEY="wrong")
        response = api_client.get(import_url(tenant, "sessions/abc/"))
        assert response.status_code == 401

    def test_key_of_another_tenant(self, api_client, tenant, other_tenant):
        api_client.credentials(HTTP_X_API_KEY="other-api-key")
        response = api_client.get(import_url(tenant, "sessions/abc/"))
        assert response.status_code == 403


@pytest.mark.django_db
class TestSynchronousImport:

    def test_import_returns_summary(self, api_client, tenant, electronics, make_csv):
        payload = make_csv(["SKU", "Name", "Family", "Voltage"],
                           ["WIDG-000", "Widget", "Electronics", "220"],
                           ["AB", "Broken", "Electronics", "110"])

        response = api_client.post(import_url(tenant), {
            "file": upload(payload),
            "mapping": json.dumps({"sku": "SKU", "name": "Name", "family": "Family", "Voltage": "Voltage"}),
        }, format="multipart")

        assert response.status_code == 200
        body = response.json()
        assert body["total_rows"] == 2
        assert body["success_count"] == 1
        assert body["failed_rows"][0]["row"] == 3
        assert "processing_time" in body
        assert Product.objects.get(sku="WIDG-000").status == ProductStatus.COMPLETE

    def test_schema_error_is_400(self, api_client, tenant, make_csv):
        response = api_client.post(import_url(tenant), {
            "file": upload(make_csv(["Code"], ["x"])),
            "mapping": json.dumps({"sku": "SKU", "name": "Name"}),
        }, format="multipart")

        assert response.status_code == 400
        assert "was not found" in response.json()["error"]

    def test_file_is_required(self, api_client, tenant):
        response = api_client.post(import_url(tenant), {"mapping": "{}"}, format="multipart")
        assert response.status_code == 400
        assert response.json() == {"error": "No file provided"}

    def test_oversized_file_is_rejected(self, api_client, tenant, settings, make_csv):
        settings.PRODUCT_IMPORT = dict(settings.PRODUCT_IMPORT, MAX_UPLOAD_BYTES=10)

        response = api_client.post(import_url(tenant), {
            "file": upload(make_csv(["SKU", "Name"], ["WIDG-000", "Widget"])),
            "mapping": json.dumps({"sku": "SKU", "name": "Name"}),
        }, format="multipart")

        assert response.status_code == 413


@pytest.mark.django_db
class TestImportSessions:
    """Queued imports run eagerly under the test settings."""

    def start(self, api_client, tenant, payload, mapping):
        return api_client.post(import_url(tenant, "sessions/"), {
            "file": upload(payload),
            "mapping": json.dumps(mapping),
        }, format="multipart")

    def test_session_lifecycle(self, api_client, tenant, make_csv):
        payload = make_csv(["SKU", "Name"], ["WIDG-000", "Widget"], ["AB", "Broken"])

        response = self.start(api_client, tenant, payload, {"sku": "SKU", "name": "Name"})

        assert response.status_code == 202
        started = response.json()
        assert started["status"] == "queued"
        assert started["progress_url"].endswith(f"sessions/{started['session_id']}/progress/")

        product_import = ProductImport.objects.get(session_id=started["session_id"])
        assert product_import.status == "completed"
        assert product_import.summary["success_count"] == 1

        status_response = api_client.get(import_url(tenant, f"sessions/{started['session_id']}/"))
        body = status_response.json()
        assert status_response.status_code == 200
        assert body["status"] == "completed"
        assert body["percentage"] == 100
        assert body["failed_rows"] == [{"row": 3, "error": "sku: SKU must be between 4 and 40 characters"}]
        assert body["import_id"] == started["import_id"]

    def test_progress_stream_replays_terminal_snapshot(self, api_client, tenant, make_csv):
        started = self.start(api_client, tenant, make_csv(["SKU", "Name"], ["WIDG-000", "Widget"]),
                             {"sku": "SKU", "name": "Name"}).json()

        response = api_client.get(import_url(tenant, f"sessions/{started['session_id']}/progress/"))

        assert response.status_code == 200
        assert response["Content-Type"] == "text/event-stream"
        stream = b"".join(response.streaming_content).decode()
        events = [chunk for chunk in stream.split("\n\n") if chunk]
        assert len(events) == 1
        payload = json.loads(events[0].split("data: ", 1)[1])
        assert payload["status"] == "completed"
        assert payload["summary"]["created_count"] == 1

    def test_schema_error_ends_session_in_error(self, api_client, tenant, make_csv):
        started = self.start(api_client, tenant, make_csv(["Code"], ["x"]), {"sku": "SKU", "name": "Name"}).json()

        product_import = ProductImport.objects.get(session_id=started["session_id"])
        body = api_client.get(import_url(tenant, f"sessions/{started['session_id']}/")).json()

        assert product_import.status == "error"
        assert body["status"] == "error"

    def test_status_falls_back_to_stored_summary(self, api_client, tenant, make_csv):
        started = self.start(api_client, tenant, make_csv(["SKU", "Name"], ["WIDG-000", "Widget"]),
                             {"sku": "SKU", "name": "Name"}).json()
        cache.clear()

        body = api_client.get(import_url(tenant, f"sessions/{started['session_id']}/")).json()

        assert body["status"] == "completed"
        assert body["summary"]["success_count"] == 1

    def test_invalid_mapping_is_rejected_before_queueing(self, api_client, tenant, make_csv):
        response = api_client.post(import_url(tenant, "sessions/"), {
            "file": upload(make_csv(["SKU", "Name"], ["WIDG-000", "Widget"])),
            "mapping": "{broken",
        }, format="multipart")

        assert response.status_code == 400
        assert not ProductImport.objects.exists()

    def test_unknown_session_is_404(self, api_client, tenant):
        assert api_client.get(import_url(tenant, "sessions/nope/")).status_code == 404
        assert api_client.get(import_url(tenant, "sessions/nope/progress/")).status_code == 404


@pytest.mark.django_db
class TestProductEndpoints:

    def test_create_and_get(self, api_client, tenant, electronics):
        voltage = Attribute.objects.get(name="Voltage")
        response = api_client.post(product_url(tenant), {
            "sku": "WIDG-000",
            "name": "Widget",
            "family_id": electronics.pk,
            "attributes": [{"attribute_id": voltage.pk, "value": "220"}],
        }, format="json")

        assert response.status_code == 201
        created = response.json()
        assert created["status"] == ProductStatus.COMPLETE
        assert created["attributes"] == {"Voltage": "220"}

        product = Product.objects.get(sku="WIDG-000")
        assert api_client.get(product_url(tenant, product)).json()["sku"] == "WIDG-000"

    def test_create_validation_errors(self, api_client, tenant):
        response = api_client.post(product_url(tenant), {"sku": "AB", "name": "", "image_url": "nope"}, format="json")

        assert response.status_code == 400
        assert set(response.json()["errors"]) == {"sku", "name", "image_url"}

    def test_create_duplicate_sku_is_409(self, api_client, tenant, make_product):
        make_product("WIDG-000")
        response = api_client.post(product_url(tenant), {"sku": "WIDG-000", "name": "Again"}, format="json")
        assert response.status_code == 409

    def test_parent_endpoint(self, api_client, tenant, make_product, electronics):
        parent = make_product("PARENT-1", family=electronics, values={"Voltage": "220"})
        variant = make_product("CHILD-01")
        other = make_product("OTHER-01")

        response = api_client.put(product_url(tenant, variant, "parent/"), {"parent_id": str(parent.pk)}, format="json")
        assert response.status_code == 200
        assert response.json()["parent_sku"] == "PARENT-1"

        conflict = api_client.put(product_url(tenant, other, "parent/"), {"parent_id": str(variant.pk)}, format="json")
        assert conflict.status_code == 409

        variants = api_client.get(product_url(tenant, parent, "variants/")).json()
        assert [v["sku"] for v in variants["variants"]] == ["CHILD-01"]

    def test_family_attribute_endpoints(self, api_client, tenant, make_product, electronics):
        product = make_product("WIDG-001", family=electronics)
        voltage = Attribute.objects.get(name="Voltage")

        before = api_client.get(product_url(tenant, product, "family-attributes/")).json()
        assert before["missing_required"] == ["Voltage"]

        response = api_client.put(product_url(tenant, product, "family-attributes/"),
                                  {"values": [{"attribute_id": voltage.pk, "value": "230"}]}, format="json")
        assert response.status_code == 200
        assert response.json()["missing_required"] == []
        assert response.json()["status"] == ProductStatus.COMPLETE

    def test_bad_values_payload(self, api_client, tenant, make_product):
        product = make_product("WIDG-001")
        response = api_client.put(product_url(tenant, product, "attributes/"), {"values": "x"}, format="json")
        assert response.status_code == 400

    def test_delete_restore_and_permanent_delete(self, api_client, tenant, make_product):
        product = make_product("WIDG-000")

        assert api_client.delete(product_url(tenant, product)).status_code == 204
        assert api_client.get(product_url(tenant, product)).status_code == 404
        assert api_client.delete(product_url(tenant, product, "permanent/")).status_code == 204
        assert not Product.objects.filter(pk=product.pk).exists()

    def test_restore(self, api_client, tenant, make_product):
        product = make_product("WIDG-000")
        api_client.delete(product_url(tenant, product))

        response = api_client.post(product_url(tenant, product, "restore/"))

        assert response.status_code == 200
        assert response.json()["sku"] == "WIDG-000"

    def test_patch_family_of_variant_is_409(self, api_client, tenant, make_product, electronics, shoes, service):
        parent = make_product("PARENT-1", family=electronics)
        variant = make_product("CHILD-01")
        service.set_parent(variant.pk, parent.pk)

        response = api_client.patch(product_url(tenant, variant), {"family_id": shoes.pk}, format="json")

        assert response.status_code == 409


@pytest.mark.django_db
class TestScheduledImportEndpoints:
    SOURCE_URL = "https://feeds.example.com/catalog/products.csv"

    def create(self, api_client, tenant, **overrides):
        body = {
            "source_url": self.SOURCE_URL,
            "cron_expression": "0 2 * * *",
            "mapping": {"sku": "SKU", "name": "Name"},
            "name": "Nightly feed",
        }
        body.update(overrides)
        return api_client.post(import_url(tenant, "schedules/"), body, format="json")

    def test_create_list_and_get(self, api_client, tenant):
        response = self.create(api_client, tenant)

        assert response.status_code == 201
        created = response.json()
        assert created["cron_expression"] == "0 2 * * *"
        assert created["status"] == "pending"
        assert PeriodicTask.objects.filter(args=json.dumps([created["schedule_id"]])).exists()

        listed = api_client.get(import_url(tenant, "schedules/")).json()["schedules"]
        assert [s["schedule_id"] for s in listed] == [created["schedule_id"]]
        detail = api_client.get(import_url(tenant, f"schedules/{created['schedule_id']}/"))
        assert detail.json()["name"] == "Nightly feed"

    def test_invalid_cron_is_400(self, api_client, tenant):
        response = self.create(api_client, tenant, cron_expression="0 2 * *")

        assert response.status_code == 400
        assert "must have 5 fields" in response.json()["error"]
        assert not ScheduledImport.objects.exists()

    def test_invalid_url_is_400(self, api_client, tenant):
        assert self.create(api_client, tenant, source_url="ftp//nowhere").status_code == 400

    def test_delete_cancels_the_schedule(self, api_client, tenant):
        schedule_id = self.create(api_client, tenant).json()["schedule_id"]

        response = api_client.delete(import_url(tenant, f"schedules/{schedule_id}/"))

        assert response.status_code == 204
        assert not ScheduledImport.objects.exists()
        assert not PeriodicTask.objects.filter(args=json.dumps([schedule_id])).exists()
        assert api_client.get(import_url(tenant, f"schedules/{schedule_id}/")).status_code == 404

    def test_schedules_of_another_tenant_are_hidden(self, api_client, tenant, other_tenant):
        schedule_id = self.create(api_client, tenant).json()["schedule_id"]
        api_client.credentials(HTTP_X_API_KEY="other-api-key")

        assert api_client.get(import_url(other_tenant, f"schedules/{schedule_id}/")).status_code == 404
        assert api_client.get(import_url(other_tenant, "schedules/")).json() == {"schedules": []}

    def test_run_now(self, api_client, tenant, make_csv, monkeypatch):
        payload = make_csv(["SKU", "Name"], ["WIDG-000", "Widget"])
        monkeypatch.setattr("apps.ingestions.scheduling.download_source",
                            lambda url: (payload, "products.csv", "text/csv"))
        schedule_id = self.create(api_client, tenant).json()["schedule_id"]

        response = api_client.post(import_url(tenant, f"schedules/{schedule_id}/run/"))

        assert response.status_code == 202
        started = response.json()
        assert started["progress_url"].endswith(f"sessions/{started['session_id']}/progress/")
        body = api_client.get(import_url(tenant, f"sessions/{started['session_id']}/")).json()
        assert body["status"] == "completed"
        assert body["import_id"] == started["import_id"]
        scheduled = ScheduledImport.objects.get(schedule_id=schedule_id)
        assert scheduled.last_session_id == started["session_id"]
        assert scheduled.status == "completed"
        assert Product.objects.filter(tenant=tenant, sku="WIDG-000").exists()


@pytest.mark.django_db
class TestProductExport:

    def export(self, api_client, tenant, **body):
        return api_client.post(product_url(tenant) + "export/", body, format="json")

    def test_json_export(self, api_client, tenant, make_product, electronics):
        widget = make_product("WIDG-000", "Widget", family=electronics, values={"Voltage": "220"})
        gadget = make_product("WIDG-001", "Gadget")

        response = self.export(api_client, tenant, product_ids=[str(gadget.pk), str(widget.pk)],
                               fields=["sku", "family", "attributes"])

        assert response.status_code == 200
        body = response.json()
        assert body["format"] == "json"
        assert body["total_records"] == 2
        assert body["filename"].startswith("products_export_") and body["filename"].endswith(".json")
        assert body["data"] == [
            {"sku": "WIDG-001", "family": None, "attributes": {}},
            {"sku": "WIDG-000", "family": "Electronics", "attributes": {"Voltage": "220"}},
        ]

    def test_csv_export(self, api_client, tenant, make_product):
        product = make_product("WIDG-000", "Widget", sub_images=["https://cdn.example.com/a.png"])

        response = self.export(api_client, tenant, product_ids=[str(product.pk)],
                               fields=["sku", "name", "sub_images", "parent_sku"],
                               format="csv", filename="catalog.csv")

        assert response.status_code == 200
        assert response["Content-Type"] == "text/csv"
        assert response["Content-Disposition"] == 'attachment; filename="catalog.csv"'
        rows = list(csv.reader(io.StringIO(response.content.decode())))
        assert rows == [
            ["sku", "name", "sub_images", "parent_sku"],
            ["WIDG-000", "Widget", '["https://cdn.example.com/a.png"]', ""],
        ]

    def test_invalid_requests_are_400(self, api_client, tenant, make_product):
        product_id = str(make_product("WIDG-000").pk)

        assert self.export(api_client, tenant, product_ids=[]).status_code == 400
        assert self.export(api_client, tenant, product_ids=["not-a-uuid"]).status_code == 400
        assert self.export(api_client, tenant, product_ids=[product_id], fields=["price"]).status_code == 400
        assert self.export(api_client, tenant, product_ids=[product_id], format="pdf").status_code == 400

    def test_unknown_products_are_404(self, api_client, tenant):
        response = self.export(api_client, tenant, product_ids=["00000000-0000-0000-0000-000000000000"])
        assert response.status_code == 404
