"""
Reverse Logistics URL Configuration

URL Routing:
    /admin/          → Django admin panel (for internal ops team)
    /api/v1/returns/ → Return tracking APIs and partner webhooks
    /api/schema/     → OpenAPI schema (drf-spectacular)
"""

from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/returns/', include('returns.urls')),
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
]
