"""
Returns Module - Serializers

Read-only views of returns and partner bookings, used by the tracking APIs
and ops tooling. Nothing here accepts input: returns are created by the
return-request flow and moved by partner webhooks.
"""

from rest_framework import serializers
from .models import ReturnRequest, ReturnEvent, ReturnShipment, ReturnShipmentEvent


def _datetime(value):
    return serializers.DateTimeField().to_representation(value) if value else None


class ReturnEventSerializer(serializers.ModelSerializer):

    class Meta:
        model = ReturnEvent
        fields = ['id', 'at', 'actor_role', 'actor_id', 'event_type', 'meta', 'created_at']
        read_only_fields = fields


class ReturnRequestSerializer(serializers.ModelSerializer):
    """
    Return with pickup tracking and the inspection SLA:
    {
        "return_number": "RET-A1B2C3D4",
        "status": "in_transit",
        "pickup": {"partner": "everestx", "partner_status": "IN_TRANSIT", ...},
        "sla": {"inspect_due_at": null, ...},
        "events": [ ... ]
    }
    """

    pickup = serializers.SerializerMethodField()
    sla = serializers.SerializerMethodField()
    events = ReturnEventSerializer(many=True, read_only=True)

    class Meta:
        model = ReturnRequest
        fields = [
            'id', 'return_number', 'order_number', 'customer_id',
            'status', 'status_updated_at', 'pickup', 'sla', 'events',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_pickup(self, obj):
        return {
            'partner': obj.pickup_partner,
            'partner_status': obj.pickup_partner_status,
            'last_event_at': _datetime(obj.pickup_last_event_at),
            'active_booking_id': obj.pickup_active_booking_id,
            'latest_tracking_number': obj.pickup_latest_tracking_number,
            'latest_external_shipment_id': obj.pickup_latest_external_shipment_id,
        }

    def get_sla(self, obj):
        return {
            'inspect_due_at': _datetime(obj.sla_inspect_due_at),
            'escalation_level': obj.sla_escalation_level,
        }


class ReturnShipmentEventSerializer(serializers.ModelSerializer):

    class Meta:
        model = ReturnShipmentEvent
        fields = ['id', 'event_id', 'at', 'partner_status', 'mapped_return_status', 'raw', 'received_at']
        read_only_fields = fields


class ReturnShipmentSerializer(serializers.ModelSerializer):
    """Partner booking with its full raw event log."""

    events = ReturnShipmentEventSerializer(many=True, read_only=True)

    class Meta:
        model = ReturnShipment
        fields = [
            'id', 'partner', 'tracking_number', 'external_shipment_id',
            'return_flow', 'is_active', 'return_id', 'status',
            'last_webhook_at', 'events', 'created_at', 'updated_at',
        ]
        read_only_fields = fields
