"""
Domain exceptions shared by the catalog services and the import pipeline.
Views translate them into HTTP responses.
"""


class CatalogError(Exception):
    """Base class for catalog domain errors."""


class ImportSchemaError(CatalogError):
    """The mapping or file is unusable; raised before any row is processed."""


class CatalogConsistencyError(CatalogError):
    """An operation would break the family/parent/variant structure. Nothing was changed."""


class ProductNotFoundError(CatalogError):
    pass


class SkuConflictError(CatalogError):
    """A live product already owns the SKU."""

    def __init__(self, sku: str, message: str = None):
        self.sku = sku
        super().__init__(message or f'Product with SKU "{sku}" already exists')


class ScheduleError(CatalogError):
    """A scheduled import definition (cron expression) is invalid."""
