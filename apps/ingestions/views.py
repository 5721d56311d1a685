"""
Product import API views: synchronous import, queued import sessions,
their progress (snapshot and server-sent event stream) and scheduled URL imports.
"""
import json
import logging
import time

from django.core.files.storage import default_storage
from django.http import JsonResponse, StreamingHttpResponse
from rest_framework import status
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.permissions import AllowAny
from rest_framework.renderers import BaseRenderer, JSONRenderer
from rest_framework.response import Response
from rest_framework.views import APIView
from drf_spectacular.utils import extend_schema, OpenApiParameter, OpenApiResponse
from drf_spectacular.types import OpenApiTypes

from apps.core.auth import authenticate_tenant
from apps.core.exceptions import CatalogError, ImportSchemaError
from apps.core.responses import catalog_error_response
from apps.core.tasks.ingestion import process_product_import, run_scheduled_import
from apps.ingestions.conf import import_setting
from apps.ingestions.importer import ProductImportService
from apps.ingestions.mapping import parse_mapping
from apps.ingestions.models import ProductImport, ScheduledImport
from apps.ingestions.progress import configured_tracker, new_session_id
from apps.ingestions.scheduling import cancel_scheduled_import, schedule_import, start_scheduled_run

logger = logging.getLogger(__name__)

TENANT_PARAMETERS = [
    OpenApiParameter("tenant_id", OpenApiTypes.UUID, OpenApiParameter.PATH, required=True),
    OpenApiParameter("X-API-Key", OpenApiTypes.STR, OpenApiParameter.HEADER, required=True),
]

IMPORT_REQUEST = {
    "multipart/form-data": {
        "type": "object",
        "properties": {
            "file": {
                "type": "string",
                "format": "binary",
                "description": "CSV, gzip-compressed CSV or XLSX file with one product per row"
            },
            "mapping": {
                "type": "string",
                "description": 'JSON object of field name -> column header, e.g. {"sku": "SKU", "name": "Title"}'
            },
        },
        "required": ["file", "mapping"],
    }
}


class EventStreamRenderer(BaseRenderer):
    media_type = 'text/event-stream'
    format = 'sse'
    charset = 'utf-8'

    def render(self, data, accepted_media_type=None, renderer_context=None):
        return json.dumps(data).encode(self.charset)


def _read_upload(request):
    """Return (uploaded_file, mapping_raw) or an error Response."""
    if 'file' not in request.FILES:
        return None, Response({'error': 'No file provided'}, status=status.HTTP_400_BAD_REQUEST)
    uploaded_file = request.FILES['file']
    max_bytes = import_setting('MAX_UPLOAD_BYTES')
    if uploaded_file.size > max_bytes:
        return None, Response(
            {'error': f'File too large (max {max_bytes} bytes)'},
            status=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
        )
    return uploaded_file, None


class ProductImportAPIView(APIView):
    """Import a product file and wait for the full result."""
    permission_classes = [AllowAny]
    parser_classes = [MultiPartParser, FormParser]

    @extend_schema(
        tags=["product-imports"],
        summary="Import products synchronously",
        parameters=TENANT_PARAMETERS,
        request=IMPORT_REQUEST,
        responses={
            200: OpenApiResponse(OpenApiTypes.OBJECT, description="Import summary (partial success is normal)"),
            400: OpenApiResponse(OpenApiTypes.OBJECT, description="Invalid mapping or unreadable file"),
        },
    )
    def post(self, request, tenant_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant

        uploaded_file, error = _read_upload(request)
        if error is not None:
            return error

        start_time = time.time()
        try:
            summary = ProductImportService(tenant).run(
                uploaded_file.read(),
                request.data.get('mapping'),
                filename=uploaded_file.name,
                content_type=uploaded_file.content_type,
            )
        except ImportSchemaError as e:
            return catalog_error_response(e)
        except Exception as e:
            logger.error(f"Product import error: {str(e)}", exc_info=True)
            return Response(
                {'error': 'Internal server error', 'details': str(e)},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        result = summary.to_dict()
        result['processing_time'] = round(time.time() - start_time, 3)
        return Response(result, status=status.HTTP_200_OK)


class ProductImportSessionAPIView(APIView):
    """Queue a product import and return the session id to follow its progress."""
    permission_classes = [AllowAny]
    parser_classes = [MultiPartParser, FormParser]

    @extend_schema(
        tags=["product-imports"],
        summary="Start a background product import",
        parameters=TENANT_PARAMETERS,
        request=IMPORT_REQUEST,
        responses={
            202: OpenApiResponse(OpenApiTypes.OBJECT, description="Import queued; follow progress with session_id"),
            400: OpenApiResponse(OpenApiTypes.OBJECT, description="Invalid mapping"),
        },
    )
    def post(self, request, tenant_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant

        uploaded_file, error = _read_upload(request)
        if error is not None:
            return error

        try:
            mapping = parse_mapping(request.data.get('mapping'))
        except ImportSchemaError as e:
            return catalog_error_response(e)

        try:
            session_id = new_session_id()
            file_path = default_storage.save(
                f"product_imports/{tenant.tenant_id}/{session_id}_{uploaded_file.name}",
                uploaded_file
            )
            product_import = ProductImport.objects.create(
                tenant=tenant,
                session_id=session_id,
                status='pending',
                original_filename=uploaded_file.name,
                file_path=file_path,
                content_type=uploaded_file.content_type,
                mapping=mapping,
            )
            configured_tracker().start(session_id, message='Import queued')

            process_product_import.delay(str(product_import.import_id))
        except Exception as e:
            logger.error(f"Could not queue product import: {str(e)}", exc_info=True)
            return Response(
                {'error': 'Internal server error', 'details': str(e)},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        return Response({
            'import_id': str(product_import.import_id),
            'session_id': session_id,
            'status': 'queued',
            'progress_url': request.build_absolute_uri(
                f"/api/v1/tenants/{tenant.tenant_id}/products/import/sessions/{session_id}/progress/"
            ),
        }, status=status.HTTP_202_ACCEPTED)


def _get_session(tenant, session_id):
    return ProductImport.objects.filter(tenant=tenant, session_id=session_id).first()


class ProductImportSessionStatusAPIView(APIView):
    """Latest progress snapshot of an import session."""
    permission_classes = [AllowAny]

    @extend_schema(
        tags=["product-imports"],
        summary="Get import progress",
        parameters=TENANT_PARAMETERS + [
            OpenApiParameter("session_id", OpenApiTypes.STR, OpenApiParameter.PATH, required=True),
        ],
        responses={
            200: OpenApiResponse(OpenApiTypes.OBJECT, description="Progress snapshot"),
            404: OpenApiResponse(OpenApiTypes.OBJECT, description="Unknown session"),
        },
    )
    def get(self, request, tenant_id, session_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant

        product_import = _get_session(tenant, session_id)
        if product_import is None:
            return Response({'error': 'Import session not found'}, status=status.HTTP_404_NOT_FOUND)

        snapshot = configured_tracker().snapshot(session_id)
        if snapshot is not None:
            data = snapshot.to_dict()
        else:
            # Snapshot expired; fall back to the stored result.
            data = {
                'status': product_import.status,
                'summary': product_import.summary,
            }
        data['session_id'] = session_id
        data['import_id'] = str(product_import.import_id)
        return Response(data, status=status.HTTP_200_OK)


class ProductImportProgressStreamAPIView(APIView):
    """
    Server-sent events stream of import progress. A new subscriber receives the
    last snapshot first; the stream closes after the import completes or fails.
    """
    permission_classes = [AllowAny]
    renderer_classes = [JSONRenderer, EventStreamRenderer]

    @extend_schema(
        tags=["product-imports"],
        summary="Stream import progress (text/event-stream)",
        parameters=TENANT_PARAMETERS + [
            OpenApiParameter("session_id", OpenApiTypes.STR, OpenApiParameter.PATH, required=True),
        ],
        responses={
            200: OpenApiResponse(OpenApiTypes.STR, description="text/event-stream of progress snapshots"),
            404: OpenApiResponse(OpenApiTypes.OBJECT, description="Unknown session"),
        },
    )
    def get(self, request, tenant_id, session_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant

        if _get_session(tenant, session_id) is None:
            return Response({'error': 'Import session not found'}, status=status.HTTP_404_NOT_FOUND)

        events = configured_tracker().stream_events(
            session_id,
            poll_interval=import_setting('PROGRESS_POLL_INTERVAL_SECONDS'),
        )
        response = StreamingHttpResponse(events, content_type='text/event-stream')
        response['Cache-Control'] = 'no-cache'
        response['X-Accel-Buffering'] = 'no'
        return response


SCHEDULE_PARAMETERS = TENANT_PARAMETERS + [
    OpenApiParameter("schedule_id", OpenApiTypes.UUID, OpenApiParameter.PATH, required=True),
]


def _schedule_data(scheduled):
    return {
        'schedule_id': str(scheduled.schedule_id),
        'name': scheduled.name,
        'description': scheduled.description,
        'source_url': scheduled.source_url,
        'cron_expression': scheduled.cron_expression,
        'mapping': scheduled.mapping,
        'status': scheduled.status,
        'last_run': scheduled.last_run.isoformat() if scheduled.last_run else None,
        'last_session_id': scheduled.last_session_id,
        'last_summary': scheduled.last_summary,
        'created_at': scheduled.created_at.isoformat() if scheduled.created_at else None,
    }


def _get_schedule(tenant, schedule_id):
    return ScheduledImport.objects.filter(tenant=tenant, schedule_id=schedule_id).first()


class ScheduledImportListAPIView(APIView):
    """List or create cron-scheduled imports of a product file URL."""
    permission_classes = [AllowAny]

    @extend_schema(
        tags=["product-imports"],
        summary="List scheduled imports",
        parameters=TENANT_PARAMETERS,
        responses={200: OpenApiResponse(OpenApiTypes.OBJECT)},
    )
    def get(self, request, tenant_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant
        schedules = ScheduledImport.objects.filter(tenant=tenant).order_by('-created_at')
        return Response({'schedules': [_schedule_data(s) for s in schedules]})

    @extend_schema(
        tags=["product-imports"],
        summary="Schedule a recurring import from a URL",
        parameters=TENANT_PARAMETERS,
        request={
            "application/json": {
                "type": "object",
                "properties": {
                    "source_url": {"type": "string", "format": "uri"},
                    "cron_expression": {"type": "string", "description": "e.g. '0 2 * * *'"},
                    "mapping": {"type": "object"},
                    "name": {"type": "string"},
                    "description": {"type": "string"},
                },
                "required": ["source_url", "cron_expression", "mapping"],
            }
        },
        responses={
            201: OpenApiResponse(OpenApiTypes.OBJECT, description="Created schedule"),
            400: OpenApiResponse(OpenApiTypes.OBJECT, description="Invalid URL, mapping or cron expression"),
        },
    )
    def post(self, request, tenant_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant
        try:
            scheduled = schedule_import(
                tenant,
                request.data.get('source_url'),
                request.data.get('cron_expression'),
                request.data.get('mapping'),
                name=request.data.get('name') or '',
                description=request.data.get('description') or '',
            )
        except CatalogError as e:
            return catalog_error_response(e)
        return Response(_schedule_data(scheduled), status=status.HTTP_201_CREATED)


class ScheduledImportDetailAPIView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(
        tags=["product-imports"],
        summary="Get a scheduled import",
        parameters=SCHEDULE_PARAMETERS,
        responses={200: OpenApiResponse(OpenApiTypes.OBJECT), 404: OpenApiResponse(OpenApiTypes.OBJECT)},
    )
    def get(self, request, tenant_id, schedule_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant
        scheduled = _get_schedule(tenant, schedule_id)
        if scheduled is None:
            return Response({'error': 'Scheduled import not found'}, status=status.HTTP_404_NOT_FOUND)
        return Response(_schedule_data(scheduled))

    @extend_schema(
        tags=["product-imports"],
        summary="Cancel a scheduled import",
        parameters=SCHEDULE_PARAMETERS,
        responses={204: None, 404: OpenApiResponse(OpenApiTypes.OBJECT)},
    )
    def delete(self, request, tenant_id, schedule_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant
        scheduled = _get_schedule(tenant, schedule_id)
        if scheduled is None:
            return Response({'error': 'Scheduled import not found'}, status=status.HTTP_404_NOT_FOUND)
        cancel_scheduled_import(scheduled)
        return Response(status=status.HTTP_204_NO_CONTENT)


class ScheduledImportRunAPIView(APIView):
    """Run a scheduled import now, outside its cron schedule."""
    permission_classes = [AllowAny]

    @extend_schema(
        tags=["product-imports"],
        summary="Run a scheduled import now",
        parameters=SCHEDULE_PARAMETERS,
        request=None,
        responses={
            202: OpenApiResponse(OpenApiTypes.OBJECT, description="Run queued; follow progress with session_id"),
            404: OpenApiResponse(OpenApiTypes.OBJECT),
        },
    )
    def post(self, request, tenant_id, schedule_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant
        scheduled = _get_schedule(tenant, schedule_id)
        if scheduled is None:
            return Response({'error': 'Scheduled import not found'}, status=status.HTTP_404_NOT_FOUND)

        try:
            product_import = start_scheduled_run(scheduled)
            run_scheduled_import.delay(str(scheduled.schedule_id), str(product_import.import_id))
        except Exception as e:
            logger.error(f"Could not queue scheduled import {schedule_id}: {str(e)}", exc_info=True)
            return Response(
                {'error': 'Internal server error', 'details': str(e)},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        return Response({
            'schedule_id': str(scheduled.schedule_id),
            'import_id': str(product_import.import_id),
            'session_id': product_import.session_id,
            'status': 'queued',
            'progress_url': request.build_absolute_uri(
                f"/api/v1/tenants/{tenant.tenant_id}/products/import/sessions/{product_import.session_id}/progress/"
            ),
        }, status=status.HTTP_202_ACCEPTED)
