"""Tests for batched, failure-isolated persistence of product records."""

import threading

import pytest
from django.db import OperationalError

from apps.attributes.models import Attribute
from apps.ingestions.persistence import BatchPersistenceOrchestrator
from apps.products.models import Product
from apps.products.services import AttributeValueInput, ProductRecord


class StubProductService:
    """Records upserts in memory; SKUs starting with BAD fail."""

    def __init__(self, locked_attempts=0):
        self.locked_attempts = locked_attempts
        self.calls = []
        self._lock = threading.Lock()

    def upsert_product(self, record):
        with self._lock:
            self.calls.append(record.sku)
            if self.locked_attempts:
                self.locked_attempts -= 1
                raise OperationalError("database is locked")
        if record.sku.startswith("BAD"):
            raise ValueError(f"cannot store {record.sku}")
        return record, not record.sku.endswith("-OLD")


def records(*skus):
    return [ProductRecord(sku=sku, name=sku, row_number=index + 2) for index, sku in enumerate(skus)]


class TestBatchPersistenceOrchestrator:

    def test_failures_do_not_affect_siblings(self):
        orchestrator = BatchPersistenceOrchestrator(StubProductService(), batch_size=2)

        result = orchestrator.persist(records("GOOD-001", "BAD-0001", "GOOD-002", "GOOD-OLD"))

        assert result.total == 4
        assert result.success_count == 3
        assert result.created_count == 2
        assert result.updated_count == 1
        assert result.failed_rows == [{"row": 3, "error": "cannot store BAD-0001"}]
        assert [r.sku for r in result.persisted] == ["GOOD-001", "GOOD-002", "GOOD-OLD"]

    def test_batch_callback_reports_running_totals(self):
        orchestrator = BatchPersistenceOrchestrator(StubProductService(), batch_size=2)
        calls = []

        orchestrator.persist(records("GOOD-001", "BAD-0001", "GOOD-002", "BAD-0002", "GOOD-003"),
                             on_batch=lambda *args: calls.append(args))

        assert calls == [(2, 1, 1), (4, 2, 2), (5, 3, 2)]

    def test_concurrent_workers_isolate_failures(self):
        service = StubProductService()
        orchestrator = BatchPersistenceOrchestrator(service, batch_size=3, max_workers=3)

        result = orchestrator.persist(records("BAD-0001", "GOOD-001", "GOOD-002", "BAD-0002", "GOOD-003"))

        assert result.success_count == 3
        assert [row["row"] for row in result.failed_rows] == [2, 5]
        assert sorted(service.calls) == sorted(["BAD-0001", "GOOD-001", "GOOD-002", "BAD-0002", "GOOD-003"])

    def test_lock_errors_are_retried(self):
        service = StubProductService(locked_attempts=2)
        orchestrator = BatchPersistenceOrchestrator(service, max_retries=3, retry_delay=0)

        result = orchestrator.persist(records("GOOD-001"))

        assert result.success_count == 1
        assert service.calls == ["GOOD-001"] * 3

    def test_lock_errors_give_up_after_max_retries(self):
        service = StubProductService(locked_attempts=5)
        orchestrator = BatchPersistenceOrchestrator(service, max_retries=2, retry_delay=0)

        result = orchestrator.persist(records("GOOD-001"))

        assert result.failed_count == 1
        assert "locked" in result.failed_rows[0]["error"]

    def test_empty_input(self):
        result = BatchPersistenceOrchestrator(StubProductService()).persist([])
        assert result.total == 0
        assert result.failed_rows == []


@pytest.mark.django_db
class TestPersistenceWithDatabase:

    def test_rolled_back_record_leaves_siblings_committed(self, service, other_tenant):
        foreign = Attribute.objects.create(tenant=other_tenant, name="Secret")
        batch = records("WIDG-000", "WIDG-001", "WIDG-002")
        batch[1].custom_values = [AttributeValueInput(foreign.pk, "x")]

        result = BatchPersistenceOrchestrator(service, batch_size=10).persist(batch)

        assert result.success_count == 2
        assert result.failed_rows[0]["row"] == 3
        assert set(Product.objects.values_list("sku", flat=True)) == {"WIDG-000", "WIDG-002"}
