from rest_framework import status
from rest_framework.response import Response

from apps.core.exceptions import (
    CatalogConsistencyError,
    CatalogError,
    ImportSchemaError,
    ProductNotFoundError,
    ScheduleError,
    SkuConflictError,
)

STATUS_BY_ERROR = (
    (ProductNotFoundError, status.HTTP_404_NOT_FOUND),
    (SkuConflictError, status.HTTP_409_CONFLICT),
    (CatalogConsistencyError, status.HTTP_409_CONFLICT),
    (ImportSchemaError, status.HTTP_400_BAD_REQUEST),
    (ScheduleError, status.HTTP_400_BAD_REQUEST),
)


def catalog_error_response(error: CatalogError) -> Response:
    """Translate a catalog domain error into a JSON error response."""
    for error_class, http_status in STATUS_BY_ERROR:
        if isinstance(error, error_class):
            return Response({'error': str(error)}, status=http_status)
    return Response({'error': str(error)}, status=status.HTTP_400_BAD_REQUEST)
