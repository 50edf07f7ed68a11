"""
URL configuration for the Stockly backend.

Every app mounts its API under `api/v1/`.
"""
from django.contrib import admin
from django.urls import path, include

admin.site.site_header = "Stockly Admin Panel"
admin.site.site_title = "Stockly Admin Portal"
admin.site.index_title = "Welcome to Stockly Admin"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('stockly.core.urls')),
    path('api/v1/', include('stockly.datatable.urls')),
    path('api/v1/', include('stockly.catalog.urls')),
    path('api/v1/', include('stockly.inventory.urls')),
]
