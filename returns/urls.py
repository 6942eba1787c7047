"""
Returns Module URL Configuration
All URLs are prefixed with /api/v1/returns/
"""

from django.urls import path
from . import views
from . import webhooks

urlpatterns = [
    # Tracking APIs
    path('<int:return_id>/', views.get_return_detail, name='return-detail'),
    path('shipments/<int:shipment_id>/', views.get_return_shipment, name='return-shipment-detail'),

    # Webhook endpoints (called by logistics partners)
    path(
        'webhook/everestx/',
        webhooks.partner_return_webhook,
        {'partner': 'everestx'},
        name='webhook-everestx',
    ),
]
