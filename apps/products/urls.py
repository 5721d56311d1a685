"""
URL patterns for the products app.
"""
from django.urls import path
from . import views

app_name = 'products'

urlpatterns = [
    path('tenants/<uuid:tenant_id>/products/', views.ProductCreateAPIView.as_view(), name='product_create'),
    path('tenants/<uuid:tenant_id>/products/export/', views.ProductExportAPIView.as_view(), name='product_export'),
    path('tenants/<uuid:tenant_id>/products/<uuid:product_id>/', views.ProductDetailAPIView.as_view(), name='product_detail'),
    path('tenants/<uuid:tenant_id>/products/<uuid:product_id>/restore/', views.ProductRestoreAPIView.as_view(), name='product_restore'),
    path('tenants/<uuid:tenant_id>/products/<uuid:product_id>/permanent/', views.ProductPermanentDeleteAPIView.as_view(), name='product_permanent_delete'),
    path('tenants/<uuid:tenant_id>/products/<uuid:product_id>/parent/', views.ProductParentAPIView.as_view(), name='product_parent'),
    path('tenants/<uuid:tenant_id>/products/<uuid:product_id>/variants/', views.ProductVariantsAPIView.as_view(), name='product_variants'),
    path('tenants/<uuid:tenant_id>/products/<uuid:product_id>/family-attributes/', views.ProductFamilyAttributesAPIView.as_view(), name='product_family_attributes'),
    path('tenants/<uuid:tenant_id>/products/<uuid:product_id>/attributes/', views.ProductAttributesAPIView.as_view(), name='product_attributes'),
]
