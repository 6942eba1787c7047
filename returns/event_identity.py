"""
Returns Module - Webhook Event Identity & Deduplication

Partners retry. Every event gets a stable id so that a retried delivery of
the same logical event is recognised and dropped:

    - the partner's own `eventId`, when it sends one
    - otherwise "h:" + sha256(key|STATUS|coarse timestamp), truncated

The check-and-log step is ONE insert guarded by the unique constraint on
(shipment, event_id). Two concurrent identical deliveries cannot both get in:
the loser hits IntegrityError and is reported as a duplicate.
"""

import hashlib
import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from .models import ReturnShipment, ReturnShipmentEvent

logger = logging.getLogger('returns')

EVENT_HASH_LENGTH = 24


def fingerprint(key, partner_status, hash_timestamp):
    base = f"{key}|{partner_status}|{hash_timestamp}"
    return hashlib.sha256(base.encode('utf-8')).hexdigest()[:EVENT_HASH_LENGTH]


def derive_event_id(event):
    if event.explicit_event_id:
        return event.explicit_event_id
    return f"h:{fingerprint(event.key, event.partner_status, event.hash_timestamp)}"


def record_shipment_event(shipment, event, event_id, mapped_status):
    """
    Append the event to the shipment's log unless it is already there.

    Returns True if the event was recorded, False if it is a duplicate.
    Any other IntegrityError propagates.
    """
    try:
        # Savepoint, so a duplicate does not poison the caller's transaction
        with transaction.atomic():
            ReturnShipmentEvent.objects.create(
                shipment=shipment,
                event_id=event_id,
                at=event.occurred_at,
                partner_status=event.partner_status,
                mapped_return_status=mapped_status,
                raw=event.payload,
            )
    except IntegrityError:
        # Only the (shipment, event_id) constraint means "duplicate"; anything
        # else (e.g. the booking was deleted) goes to the caller.
        if not ReturnShipmentEvent.objects.filter(shipment_id=shipment.pk, event_id=event_id).exists():
            raise
        logger.info(f"Duplicate partner event dropped: shipment={shipment.pk} event={event_id}")
        return False

    ReturnShipment.objects.filter(pk=shipment.pk).update(
        status=event.partner_status,
        last_webhook_at=event.occurred_at,
        updated_at=timezone.now(),
    )
    return True
