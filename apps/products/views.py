from typing import Dict, List, Optional, Tuple
import logging
import uuid

from django.db import transaction
from django.http import HttpResponse, JsonResponse
from django.utils import timezone
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from rest_framework.permissions import AllowAny
from drf_spectacular.utils import extend_schema, OpenApiParameter, OpenApiResponse
from drf_spectacular.types import OpenApiTypes

from apps.core.auth import authenticate_tenant
from apps.core.exceptions import CatalogError
from apps.core.responses import catalog_error_response
from apps.ingestions.row_validator import (
    NAME_MAX_LENGTH,
    SKU_MAX_LENGTH,
    SKU_MIN_LENGTH,
    is_valid_url,
)
from apps.products.export import EXPORT_FIELDS, EXPORT_FORMATS, export_filename, render_csv, select_fields
from apps.products.services import ProductRecord, ProductService

logger = logging.getLogger(__name__)

TENANT_PARAMETERS = [
    OpenApiParameter("tenant_id", OpenApiTypes.UUID, OpenApiParameter.PATH, required=True),
    OpenApiParameter("X-API-Key", OpenApiTypes.STR, OpenApiParameter.HEADER, required=True),
]
PRODUCT_PARAMETERS = TENANT_PARAMETERS + [
    OpenApiParameter("product_id", OpenApiTypes.UUID, OpenApiParameter.PATH, required=True),
]


def _validate_product_fields(data: Dict, partial: bool = False) -> Dict[str, str]:
    """Field errors for a product payload, keyed by field name."""
    errors = {}
    if not partial or 'sku' in data:
        sku = str(data.get('sku') or '').strip()
        if not SKU_MIN_LENGTH <= len(sku) <= SKU_MAX_LENGTH:
            errors['sku'] = 'SKU must be between 4 and 40 characters'
    if not partial or 'name' in data:
        name = str(data.get('name') or '').strip()
        if not 1 <= len(name) <= NAME_MAX_LENGTH:
            errors['name'] = 'Name must be between 1 and 100 characters'
    for field_name, label in (('product_link', 'Product link'), ('image_url', 'Image URL')):
        value = data.get(field_name)
        if value and not is_valid_url(value):
            errors[field_name] = f'{label} must be a valid URL'
    sub_images = data.get('sub_images')
    if sub_images is not None:
        if not isinstance(sub_images, list) or not all(isinstance(u, str) and is_valid_url(u) for u in sub_images):
            errors['sub_images'] = 'Sub images must be a list of valid URLs'
    return errors


def _parse_values(data: Dict) -> Tuple[Optional[List[Dict]], Optional[Response]]:
    values = data.get('values')
    if not isinstance(values, list) or not all(isinstance(v, dict) and 'attribute_id' in v for v in values):
        return None, Response(
            {'error': 'values must be a list of {"attribute_id", "value"} objects'},
            status=status.HTTP_400_BAD_REQUEST
        )
    return values, None


class ProductCreateAPIView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(
        tags=["products"],
        summary="Create a product (optionally as a variant via parent_sku)",
        parameters=TENANT_PARAMETERS,
        request=OpenApiTypes.OBJECT,
        responses={
            201: OpenApiResponse(OpenApiTypes.OBJECT, description="Created product"),
            400: OpenApiResponse(OpenApiTypes.OBJECT, description="Validation errors"),
            409: OpenApiResponse(OpenApiTypes.OBJECT, description="SKU already exists"),
        },
    )
    def post(self, request, tenant_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant

        data = request.data
        errors = _validate_product_fields(data)
        if errors:
            return Response({'errors': errors}, status=status.HTTP_400_BAD_REQUEST)

        record = ProductRecord(
            sku=str(data['sku']).strip(),
            name=str(data['name']).strip(),
            product_link=data.get('product_link') or None,
            image_url=data.get('image_url') or None,
            sub_images=data.get('sub_images') or [],
            category_id=data.get('category_id'),
            family_id=data.get('family_id'),
            parent_sku=(data.get('parent_sku') or '').strip() or None,
        )
        service = ProductService(tenant)
        try:
            with transaction.atomic():
                product = service.create_product(record, update_existing=bool(data.get('update_existing')))
                if data.get('attributes'):
                    service.update_attribute_values(product.pk, data['attributes'])
            return Response(service.export_product(product.pk), status=status.HTTP_201_CREATED)
        except CatalogError as e:
            return catalog_error_response(e)


class ProductDetailAPIView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(
        tags=["products"],
        summary="Get a product with its attribute values",
        parameters=PRODUCT_PARAMETERS,
        responses={200: OpenApiResponse(OpenApiTypes.OBJECT), 404: OpenApiResponse(OpenApiTypes.OBJECT)},
    )
    def get(self, request, tenant_id, product_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant
        try:
            return Response(ProductService(tenant).export_product(product_id))
        except CatalogError as e:
            return catalog_error_response(e)

    @extend_schema(
        tags=["products"],
        summary="Update product fields, family or parent",
        parameters=PRODUCT_PARAMETERS,
        request=OpenApiTypes.OBJECT,
        responses={
            200: OpenApiResponse(OpenApiTypes.OBJECT),
            400: OpenApiResponse(OpenApiTypes.OBJECT),
            409: OpenApiResponse(OpenApiTypes.OBJECT, description="SKU conflict or inconsistent family/parent change"),
        },
    )
    def patch(self, request, tenant_id, product_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant

        data = request.data
        errors = _validate_product_fields(data, partial=True)
        if errors:
            return Response({'errors': errors}, status=status.HTTP_400_BAD_REQUEST)

        changes = {}
        for field_name in ('sku', 'name'):
            if field_name in data:
                changes[field_name] = str(data[field_name]).strip()
        for field_name in ('image_url', 'product_link', 'sub_images', 'category_id', 'family_id'):
            if field_name in data:
                changes[field_name] = data[field_name]
        if 'parent_product_id' in data:
            parent_id = data['parent_product_id']
            if parent_id is not None:
                try:
                    parent_id = uuid.UUID(str(parent_id))
                except ValueError:
                    return Response({'errors': {'parent_product_id': 'Must be a UUID'}},
                                    status=status.HTTP_400_BAD_REQUEST)
            changes['parent_product_id'] = parent_id

        service = ProductService(tenant)
        try:
            product = service.update_product(product_id, changes)
            return Response(service.export_product(product.pk))
        except CatalogError as e:
            return catalog_error_response(e)

    @extend_schema(
        tags=["products"],
        summary="Soft-delete a product",
        parameters=PRODUCT_PARAMETERS,
        responses={204: None, 404: OpenApiResponse(OpenApiTypes.OBJECT)},
    )
    def delete(self, request, tenant_id, product_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant
        try:
            ProductService(tenant).soft_delete_product(product_id)
        except CatalogError as e:
            return catalog_error_response(e)
        return Response(status=status.HTTP_204_NO_CONTENT)


class ProductRestoreAPIView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(
        tags=["products"],
        summary="Restore a soft-deleted product",
        parameters=PRODUCT_PARAMETERS,
        responses={200: OpenApiResponse(OpenApiTypes.OBJECT), 409: OpenApiResponse(OpenApiTypes.OBJECT)},
    )
    def post(self, request, tenant_id, product_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant
        service = ProductService(tenant)
        try:
            product = service.restore_product(product_id)
            return Response(service.export_product(product.pk))
        except CatalogError as e:
            return catalog_error_response(e)


class ProductPermanentDeleteAPIView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(
        tags=["products"],
        summary="Permanently delete a soft-deleted product (variants are unlinked first)",
        parameters=PRODUCT_PARAMETERS,
        responses={204: None, 409: OpenApiResponse(OpenApiTypes.OBJECT)},
    )
    def delete(self, request, tenant_id, product_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant
        try:
            ProductService(tenant).permanently_delete_product(product_id)
        except CatalogError as e:
            return catalog_error_response(e)
        return Response(status=status.HTTP_204_NO_CONTENT)


class ProductParentAPIView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(
        tags=["products"],
        summary="Set or clear the parent product",
        parameters=PRODUCT_PARAMETERS,
        request=OpenApiTypes.OBJECT,
        responses={
            200: OpenApiResponse(OpenApiTypes.OBJECT),
            409: OpenApiResponse(OpenApiTypes.OBJECT, description="Parent is a variant, or product has variants"),
        },
    )
    def put(self, request, tenant_id, product_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant

        parent_id = request.data.get('parent_id')
        if parent_id is not None:
            try:
                parent_id = uuid.UUID(str(parent_id))
            except ValueError:
                return Response({'error': 'parent_id must be a UUID or null'}, status=status.HTTP_400_BAD_REQUEST)

        service = ProductService(tenant)
        try:
            product = service.set_parent(product_id, parent_id)
            return Response(service.export_product(product.pk))
        except CatalogError as e:
            return catalog_error_response(e)


class ProductVariantsAPIView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(
        tags=["products"],
        summary="List the variants of a product",
        parameters=PRODUCT_PARAMETERS,
        responses={200: OpenApiResponse(OpenApiTypes.OBJECT)},
    )
    def get(self, request, tenant_id, product_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant
        service = ProductService(tenant)
        try:
            parent = service.get_product(product_id)
        except CatalogError as e:
            return catalog_error_response(e)
        variants = [
            {'product_id': str(v.pk), 'sku': v.sku, 'name': v.name, 'status': v.status}
            for v in service.list_variants(parent)
        ]
        return Response({'product_id': str(parent.pk), 'variants': variants})


class ProductFamilyAttributesAPIView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(
        tags=["products"],
        summary="Required and optional family attributes with current values",
        parameters=PRODUCT_PARAMETERS,
        responses={200: OpenApiResponse(OpenApiTypes.OBJECT)},
    )
    def get(self, request, tenant_id, product_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant
        try:
            return Response(ProductService(tenant).get_family_attribute_values(product_id))
        except CatalogError as e:
            return catalog_error_response(e)

    @extend_schema(
        tags=["products"],
        summary="Set values for attributes of the product's family",
        parameters=PRODUCT_PARAMETERS,
        request=OpenApiTypes.OBJECT,
        responses={200: OpenApiResponse(OpenApiTypes.OBJECT), 409: OpenApiResponse(OpenApiTypes.OBJECT)},
    )
    def put(self, request, tenant_id, product_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant
        values, error = _parse_values(request.data)
        if error is not None:
            return error
        service = ProductService(tenant)
        try:
            service.update_family_attribute_values(product_id, values)
            return Response(service.get_family_attribute_values(product_id))
        except CatalogError as e:
            return catalog_error_response(e)


class ProductAttributesAPIView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(
        tags=["products"],
        summary="Set custom attribute values",
        parameters=PRODUCT_PARAMETERS,
        request=OpenApiTypes.OBJECT,
        responses={200: OpenApiResponse(OpenApiTypes.OBJECT), 409: OpenApiResponse(OpenApiTypes.OBJECT)},
    )
    def put(self, request, tenant_id, product_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant
        values, error = _parse_values(request.data)
        if error is not None:
            return error
        service = ProductService(tenant)
        try:
            service.update_attribute_values(product_id, values)
            return Response(service.export_product(product_id))
        except CatalogError as e:
            return catalog_error_response(e)


class ProductExportAPIView(APIView):
    """Export selected products as JSON records or a CSV download."""
    permission_classes = [AllowAny]

    @extend_schema(
        tags=["products"],
        summary="Export products",
        parameters=TENANT_PARAMETERS,
        request={
            "application/json": {
                "type": "object",
                "properties": {
                    "product_ids": {"type": "array", "items": {"type": "string", "format": "uuid"}},
                    "fields": {"type": "array", "items": {"type": "string", "enum": list(EXPORT_FIELDS)}},
                    "format": {"type": "string", "enum": list(EXPORT_FORMATS)},
                    "filename": {"type": "string"},
                },
                "required": ["product_ids"],
            }
        },
        responses={
            200: OpenApiResponse(OpenApiTypes.OBJECT, description="Exported records, or a CSV attachment"),
            400: OpenApiResponse(OpenApiTypes.OBJECT, description="Invalid ids, fields or format"),
            404: OpenApiResponse(OpenApiTypes.OBJECT, description="None of the products exist"),
        },
    )
    def post(self, request, tenant_id):
        tenant = authenticate_tenant(request, tenant_id)
        if isinstance(tenant, JsonResponse):
            return tenant

        raw_ids = request.data.get('product_ids')
        if not isinstance(raw_ids, list) or not raw_ids:
            return Response({'error': 'product_ids must be a non-empty list'}, status=status.HTTP_400_BAD_REQUEST)
        try:
            product_ids = [uuid.UUID(str(pid)) for pid in raw_ids]
        except ValueError:
            return Response({'error': 'product_ids must be UUIDs'}, status=status.HTTP_400_BAD_REQUEST)

        fields = request.data.get('fields') or list(EXPORT_FIELDS)
        if not isinstance(fields, list):
            return Response({'error': 'fields must be a list'}, status=status.HTTP_400_BAD_REQUEST)
        unknown = [f for f in fields if f not in EXPORT_FIELDS]
        if unknown:
            return Response({'error': f"Unknown export fields: {', '.join(map(str, unknown))}"},
                            status=status.HTTP_400_BAD_REQUEST)

        fmt = request.data.get('format') or 'json'
        if fmt not in EXPORT_FORMATS:
            return Response({'error': f"format must be one of: {', '.join(EXPORT_FORMATS)}"},
                            status=status.HTTP_400_BAD_REQUEST)

        try:
            records = select_fields(ProductService(tenant).export_products(product_ids), fields)
        except CatalogError as e:
            return catalog_error_response(e)

        filename = export_filename(fmt, request.data.get('filename'))
        if fmt == 'csv':
            response = HttpResponse(render_csv(records, fields), content_type=EXPORT_FORMATS[fmt])
            response['Content-Disposition'] = f'attachment; filename="{filename}"'
            return response

        return Response({
            'data': records,
            'format': fmt,
            'filename': filename,
            'total_records': len(records),
            'fields': fields,
            'exported_at': timezone.now().isoformat(),
        })
