"""
Product import pipeline.

read file -> parse headers -> resolve family definitions -> validate rows
-> persist in batches -> link variants to parents -> summary

Partial success is the normal outcome: every row ends up either counted as a
success or listed in failed_rows with its row number and a message.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from apps.core.exceptions import CatalogError, ImportSchemaError
from apps.ingestions.conf import import_setting
from apps.ingestions.family_resolver import FamilyAttributeResolver
from apps.ingestions.lookup_cache import CatalogLookup
from apps.ingestions.mapping import ColumnMapping, parse_mapping
from apps.ingestions.persistence import BatchPersistenceOrchestrator
from apps.ingestions.progress import (
    STATUS_COMPLETED,
    STATUS_ERROR,
    ImportProgress,
    ProgressTracker,
    configured_tracker,
)
from apps.ingestions.row_validator import RowValidator
from apps.ingestions.schema_parser import parse_headers, read_tabular
from apps.products.services import ProductRecord, ProductService

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ImportProgress], None]


@dataclass
class ImportSummary:
    total_rows: int = 0
    success_count: int = 0
    created_count: int = 0
    updated_count: int = 0
    failed_rows: List[Dict] = field(default_factory=list)
    validation_errors: List[Dict] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    family_definitions: List[Dict] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failed_rows)

    def to_dict(self) -> Dict:
        return {
            'total_rows': self.total_rows,
            'success_count': self.success_count,
            'failed_count': self.failed_count,
            'created_count': self.created_count,
            'updated_count': self.updated_count,
            'failed_rows': self.failed_rows,
            'validation_errors': self.validation_errors,
            'warnings': self.warnings,
            'family_definitions': self.family_definitions,
        }


class ProductImportService:
    """Imports one tabular file of products for a tenant."""

    def __init__(self, tenant, batch_size: int = None, max_workers: int = None,
                 lookup: CatalogLookup = None, product_service: ProductService = None):
        self.tenant = tenant
        self.lookup = lookup or CatalogLookup(tenant, ttl_seconds=import_setting('FAMILY_CACHE_TTL_SECONDS'))
        self.product_service = product_service or ProductService(tenant)
        self.orchestrator = BatchPersistenceOrchestrator(
            self.product_service,
            batch_size=batch_size or import_setting('BATCH_SIZE'),
            max_workers=max_workers or import_setting('MAX_WORKERS'),
        )

    def run(self, payload: bytes, mapping, filename: Optional[str] = None,
            content_type: Optional[str] = None, on_progress: Optional[ProgressCallback] = None) -> ImportSummary:
        """
        Import payload using mapping (field name -> column header, JSON or dict).
        Raises ImportSchemaError before touching any row if the mapping or file is unusable.
        """
        mapping_fields = parse_mapping(mapping)
        data = read_tabular(payload, filename=filename, content_type=content_type)
        schema = parse_headers(data.headers, data.rows[0] if data.rows else None)
        column_mapping = ColumnMapping(mapping_fields, schema)
        column_mapping.validate()
        logger.info(f"Import for tenant {self.tenant.pk}: {len(data.rows)} rows, "
                    f"headers={[(h.clean_name, h.data_type, h.type_source) for h in schema]}")

        summary = ImportSummary(total_rows=len(data.rows))

        resolver = FamilyAttributeResolver(self.lookup)
        definitions = resolver.resolve(data.rows, column_mapping)
        summary.family_definitions = [d.to_dict() for d in definitions.values()]
        summary.warnings.extend(resolver.warnings)

        validator = RowValidator(column_mapping, definitions, self.lookup)
        records: List[ProductRecord] = []
        for row in data.rows:
            result = validator.validate(row)
            if result.is_valid:
                records.append(result.record)
            else:
                summary.failed_rows.append({'row': row.row_number, 'error': result.error_message()})
                summary.validation_errors.extend(e.to_dict() for e in result.errors)
        summary.warnings.extend(validator.warnings)
        invalid_count = len(summary.failed_rows)
        logger.info(f"Validated {len(data.rows)} rows: {len(records)} valid, {invalid_count} invalid")

        def report(processed: int, succeeded: int, failed: int, percentage: int, message: str):
            if on_progress is None:
                return
            on_progress(ImportProgress(
                processed=invalid_count + processed,
                total=summary.total_rows,
                success_count=succeeded,
                failed_count=invalid_count + failed,
                percentage=percentage,
                message=message,
            ))

        report(0, 0, 0, 50, f"Validated {summary.total_rows} rows, {len(records)} ready to save")

        def on_batch(processed: int, succeeded: int, failed: int):
            percentage = 50 + int(processed / len(records) * 50)
            report(processed, succeeded, failed, min(percentage, 99),
                   f"Saved {processed} of {len(records)} products")

        persisted = self.orchestrator.persist(records, on_batch=on_batch)
        summary.success_count = persisted.success_count
        summary.created_count = persisted.created_count
        summary.updated_count = persisted.updated_count
        summary.failed_rows.extend(persisted.failed_rows)
        summary.failed_rows.sort(key=lambda item: item['row'] or 0)

        summary.warnings.extend(self._link_variants(persisted.persisted))

        logger.info(f"Import for tenant {self.tenant.pk} finished: {summary.success_count}/"
                    f"{summary.total_rows} succeeded, {summary.failed_count} failed, "
                    f"{len(summary.warnings)} warnings")
        return summary

    def _link_variants(self, records: List[ProductRecord]) -> List[str]:
        """Attach rows that named a parentSku to their parent, in row order."""
        warnings = []
        for record in sorted((r for r in records if r.parent_sku), key=lambda r: r.row_number or 0):
            product = self.product_service.find_by_sku(record.sku)
            parent = self.product_service.find_by_sku(record.parent_sku)
            if product is None:
                continue
            if parent is None:
                warnings.append(f'Row {record.row_number}: parent SKU "{record.parent_sku}" not found')
                continue
            try:
                self.product_service.set_parent(product.pk, parent.pk)
            except CatalogError as e:
                warnings.append(f"Row {record.row_number}: {e}")
        for message in warnings:
            logger.warning(message)
        return warnings

    def run_with_progress(self, session_id: str, payload: bytes, mapping,
                          filename: Optional[str] = None, content_type: Optional[str] = None,
                          tracker: Optional[ProgressTracker] = None) -> ImportSummary:
        """
        Same as run() but publishes progress snapshots under session_id. The last
        snapshot is terminal (completed or error); errors are re-raised after publishing.
        """
        tracker = tracker or configured_tracker()
        tracker.start(session_id)

        try:
            summary = self.run(payload, mapping, filename=filename, content_type=content_type,
                               on_progress=lambda progress: tracker.publish(session_id, progress))
        except ImportSchemaError as e:
            tracker.publish(session_id, ImportProgress(status=STATUS_ERROR, message=str(e)))
            raise
        except Exception as e:
            logger.error(f"Import {session_id} failed: {str(e)}", exc_info=True)
            tracker.publish(session_id, ImportProgress(status=STATUS_ERROR, message=f"Import failed: {e}"))
            raise

        tracker.publish(session_id, ImportProgress(
            processed=summary.total_rows,
            total=summary.total_rows,
            success_count=summary.success_count,
            failed_count=summary.failed_count,
            percentage=100,
            status=STATUS_COMPLETED,
            message=f"Imported {summary.success_count} of {summary.total_rows} products",
            failed_rows=summary.failed_rows,
            summary=summary.to_dict(),
        ))
        return summary
