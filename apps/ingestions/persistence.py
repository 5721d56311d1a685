"""
Batch persistence of validated product records.

Records are written in fixed-size batches. Inside a batch every record is
upserted on its own (concurrently when max_workers > 1); one record failing
never cancels or rolls back its siblings. The caller is told after every batch.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from django.db import OperationalError, close_old_connections, connection

from apps.products.services import ProductRecord, ProductService

logger = logging.getLogger(__name__)

BatchCallback = Callable[[int, int, int], None]


@dataclass
class PersistenceResult:
    total: int = 0
    success_count: int = 0
    created_count: int = 0
    updated_count: int = 0
    failed_rows: List[Dict] = field(default_factory=list)
    persisted: List[ProductRecord] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failed_rows)


class BatchPersistenceOrchestrator:

    def __init__(self, product_service: ProductService, batch_size: int = 50, max_workers: int = 1,
                 max_retries: int = 3, retry_delay: float = 0.1):
        self.product_service = product_service
        self.batch_size = max(1, batch_size)
        self.max_workers = max(1, max_workers)
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def _upsert_with_retry(self, record: ProductRecord):
        """Upsert one record, retrying when the database reports a lock."""
        for attempt in range(self.max_retries):
            try:
                return self.product_service.upsert_product(record)
            except OperationalError as e:
                if "lock" in str(e).lower() and attempt < self.max_retries - 1:
                    logger.warning("DB locked on SKU %s, retrying in %s s (attempt %s/%s)",
                                   record.sku, self.retry_delay, attempt + 1, self.max_retries)
                    time.sleep(self.retry_delay * (attempt + 1))
                else:
                    raise

    def _upsert_in_worker(self, record: ProductRecord):
        # Worker threads get their own connection; close it when done.
        close_old_connections()
        try:
            return self._upsert_with_retry(record)
        finally:
            connection.close()

    def _settle(self, record: ProductRecord, outcome, error: Optional[Exception], result: PersistenceResult):
        if error is not None:
            logger.warning(f"Row {record.row_number} (SKU {record.sku}) failed to persist: {error}")
            result.failed_rows.append({'row': record.row_number, 'error': str(error)})
            return
        _, created = outcome
        result.success_count += 1
        if created:
            result.created_count += 1
        else:
            result.updated_count += 1
        result.persisted.append(record)

    def _run_batch(self, batch: List[ProductRecord], result: PersistenceResult) -> None:
        if self.max_workers == 1:
            for record in batch:
                try:
                    outcome = self._upsert_with_retry(record)
                except Exception as e:
                    self._settle(record, None, e, result)
                else:
                    self._settle(record, outcome, None, result)
            return

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(batch))) as executor:
            future_to_record = {
                executor.submit(self._upsert_in_worker, record): record
                for record in batch
            }
            for future in as_completed(future_to_record):
                record = future_to_record[future]
                try:
                    outcome = future.result()
                except Exception as e:
                    self._settle(record, None, e, result)
                else:
                    self._settle(record, outcome, None, result)

    def persist(self, records: List[ProductRecord], on_batch: Optional[BatchCallback] = None) -> PersistenceResult:
        """
        Write all records. on_batch(processed, succeeded, failed) runs after each batch
        with running totals.
        """
        result = PersistenceResult(total=len(records))
        for start in range(0, len(records), self.batch_size):
            batch = records[start:start + self.batch_size]
            self._run_batch(batch, result)
            processed = min(start + self.batch_size, len(records))
            logger.info(f"Persisted batch {start // self.batch_size + 1}: "
                        f"{processed}/{len(records)} records, "
                        f"{result.success_count} ok, {result.failed_count} failed")
            if on_batch is not None:
                on_batch(processed, result.success_count, result.failed_count)

        result.failed_rows.sort(key=lambda item: item['row'] or 0)
        return result
