from typing import Optional, Union
from django.http import JsonResponse
from rest_framework import status
from apps.tenants.models import Tenant


def authenticate_tenant(request, tenant_id: str) -> Union[Tenant, JsonResponse]:
    """
    Resolve the tenant for a catalog request from the X-API-Key header.
    - The key is matched against the stored SHA-256 hash (or an already hashed key)
    - The tenant in the URL must be the key's tenant; catalog data is never
      looked up for any other tenant
    Returns:
        Tenant object if authentication succeeds, else a JsonResponse (401 or 403)
    """
    api_key = request.headers.get('X-API-Key')
    if not api_key:
        return JsonResponse(
            {'error': 'X-API-Key header required'},
            status=status.HTTP_401_UNAUTHORIZED
        )

    candidate_hashes = [api_key, Tenant.hash_api_key(api_key)]
    tenant: Optional[Tenant] = Tenant.objects.filter(api_key_hash__in=candidate_hashes).first()
    if tenant is None:
        return JsonResponse(
            {'error': 'Invalid API key'},
            status=status.HTTP_401_UNAUTHORIZED
        )

    if str(tenant.tenant_id) != str(tenant_id):
        return JsonResponse(
            {'error': 'API key does not belong to this tenant'},
            status=status.HTTP_403_FORBIDDEN
        )

    return tenant
