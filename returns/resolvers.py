"""
Returns Module - Shipment & Return Resolution

Finds the partner booking a webhook refers to and, from it, the return.
Both lookups treat "not found" as a normal answer (None), never an error.
"""

from .models import ReturnRequest, ReturnShipment

TRUTHY_VALUES = {'1', 'true', 'yes', 'y', 'on'}


def boolish(value):
    if isinstance(value, bool):
        return value
    return str(value if value is not None else '').strip().lower() in TRUTHY_VALUES


def resolve_shipment(partner, tracking_number, external_shipment_id):
    """
    The booking for this partner event, or None.

    Tracking number is tried before the partner's shipment id, and active
    bookings win over superseded ones.
    """
    bookings = ReturnShipment.objects.filter(partner=partner).order_by('-is_active', '-created_at', '-id')

    if tracking_number:
        shipment = bookings.filter(tracking_number=tracking_number).first()
        if shipment:
            return shipment

    if external_shipment_id:
        return bookings.filter(external_shipment_id=external_shipment_id).first()

    return None


def is_return_flow(shipment, payload):
    """
    Return pickups are marked at booking time (column or booking payload);
    the partner can also echo the marker back in `meta.returnFlow`.
    """
    snapshot = shipment.payload_snapshot if isinstance(shipment.payload_snapshot, dict) else {}
    meta = payload.get('meta') if isinstance(payload.get('meta'), dict) else {}

    return (
        boolish(snapshot.get('returnFlow'))
        or shipment.return_flow
        or boolish(meta.get('returnFlow'))
    )


def resolve_return(shipment):
    if shipment.return_id is None:
        return None
    return ReturnRequest.objects.filter(pk=shipment.return_id).first()
