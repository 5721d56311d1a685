"""
URL patterns for the ingestions app.
"""
from django.urls import path
from . import views

app_name = 'ingestions'

urlpatterns = [
    path('tenants/<uuid:tenant_id>/products/import/', views.ProductImportAPIView.as_view(), name='product_import'),
    path('tenants/<uuid:tenant_id>/products/import/sessions/', views.ProductImportSessionAPIView.as_view(), name='product_import_session'),
    path('tenants/<uuid:tenant_id>/products/import/sessions/<str:session_id>/', views.ProductImportSessionStatusAPIView.as_view(), name='product_import_status'),
    path('tenants/<uuid:tenant_id>/products/import/sessions/<str:session_id>/progress/', views.ProductImportProgressStreamAPIView.as_view(), name='product_import_progress'),
    path('tenants/<uuid:tenant_id>/products/import/schedules/', views.ScheduledImportListAPIView.as_view(), name='scheduled_import_list'),
    path('tenants/<uuid:tenant_id>/products/import/schedules/<uuid:schedule_id>/', views.ScheduledImportDetailAPIView.as_view(), name='scheduled_import_detail'),
    path('tenants/<uuid:tenant_id>/products/import/schedules/<uuid:schedule_id>/run/', views.ScheduledImportRunAPIView.as_view(), name='scheduled_import_run'),
]
