"""
Returns Module - Django Admin Configuration

Internal admin panel used by the operations team to:
- Look up a return and see every status change and who made it
- Look up a partner booking and see exactly what the partner sent us
- Spot returns whose seller inspection SLA is overdue

Audit logs (return events, partner events) are read-only here: they are
only ever appended to by the webhook engine and the SLA job.

Access at: http://127.0.0.1:8000/admin/
"""

from django.contrib import admin
from .models import ReturnRequest, ReturnEvent, ReturnShipment, ReturnShipmentEvent


# ============================================================
# INLINE MODELS (shown inside parent model's page)
# ============================================================

class ReturnEventInline(admin.TabularInline):
    """Show the audit trail inside the ReturnRequest detail page."""
    model = ReturnEvent
    extra = 0
    can_delete = False
    readonly_fields = ['at', 'actor_role', 'actor_id', 'event_type', 'meta', 'created_at']
    ordering = ['-at']

    def has_add_permission(self, request, obj=None):
        return False


class ReturnShipmentEventInline(admin.TabularInline):
    """Show raw partner events inside the ReturnShipment detail page."""
    model = ReturnShipmentEvent
    extra = 0
    can_delete = False
    readonly_fields = ['event_id', 'at', 'partner_status', 'mapped_return_status', 'raw', 'received_at']
    ordering = ['-at']

    def has_add_permission(self, request, obj=None):
        return False


# ============================================================
# RETURN REQUEST ADMIN
# ============================================================

@admin.register(ReturnRequest)
class ReturnRequestAdmin(admin.ModelAdmin):
    list_display = [
        'return_number', 'order_number', 'customer_id', 'status',
        'pickup_partner_status', 'pickup_last_event_at',
        'sla_inspect_due_at', 'sla_escalation_level',
    ]
    list_filter = ['status', 'pickup_partner', 'sla_escalation_level']
    search_fields = [
        'return_number', 'order_number',
        'pickup_latest_tracking_number', 'pickup_latest_external_shipment_id',
    ]
    readonly_fields = ['return_number', 'created_at', 'updated_at']
    list_per_page = 25

    inlines = [ReturnEventInline]

    fieldsets = (
        ('Return Info', {
            'fields': ('return_number', 'order_number', 'customer_id', 'status', 'status_updated_at')
        }),
        ('Pickup Tracking', {
            'fields': (
                'pickup_partner', 'pickup_partner_status', 'pickup_last_event_at',
                'pickup_active_booking_id', 'pickup_latest_tracking_number',
                'pickup_latest_external_shipment_id',
            )
        }),
        ('Inspection SLA', {
            'fields': ('sla_inspect_due_at', 'sla_escalation_level', 'sla_last_escalated_at')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )


# ============================================================
# RETURN SHIPMENT ADMIN
# ============================================================

@admin.register(ReturnShipment)
class ReturnShipmentAdmin(admin.ModelAdmin):
    list_display = [
        'id', 'partner', 'tracking_number', 'external_shipment_id',
        'return_id', 'return_flow', 'is_active', 'status', 'last_webhook_at',
    ]
    list_filter = ['partner', 'return_flow', 'is_active']
    search_fields = ['tracking_number', 'external_shipment_id', 'return_id']
    readonly_fields = ['status', 'last_webhook_at', 'created_at', 'updated_at']
    list_per_page = 25

    inlines = [ReturnShipmentEventInline]
