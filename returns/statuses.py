"""
Returns Module - Status Vocabulary

Every state a return can be in, plus the RANK table for the subset that
partner webhooks are allowed to produce.

Ranks express the expected chronological order of a pickup:

    pickup_scheduled (10)
        pickup_failed (11) / pickup_cancelled (12)   <- siblings of scheduled
    picked_up (20)
    in_transit (30)
    out_for_delivery (40)
    delivered_to_seller (50)

Anything else (pending, inspection states, refunds, unknown strings) ranks 0.
Rank 0 means "unranked" and NEVER blocks a transition on rank grounds.
"""

from django.db import models


class ReturnStatus(models.TextChoices):
    # Customer initiated / review
    PENDING = 'pending', 'Pending'
    UNDER_REVIEW = 'under_review', 'Under Review'
    APPROVED_AWAITING_PICKUP = 'approved_awaiting_pickup', 'Approved, Awaiting Pickup'

    # Pickup + transit (partner webhook driven)
    PICKUP_SCHEDULED = 'pickup_scheduled', 'Pickup Scheduled'
    PICKED_UP = 'picked_up', 'Picked Up'
    IN_TRANSIT = 'in_transit', 'In Transit'
    OUT_FOR_DELIVERY = 'out_for_delivery', 'Out for Delivery'
    DELIVERED_TO_SELLER = 'delivered_to_seller', 'Delivered to Seller'

    # Seller receipt + inspection
    RECEIVED_BY_SELLER = 'received_by_seller', 'Received by Seller'
    INSPECTION_APPROVED = 'inspection_approved', 'Inspection Approved'
    INSPECTION_REJECTED = 'inspection_rejected', 'Inspection Rejected'

    # Refund
    REFUND_QUEUED = 'refund_queued', 'Refund Queued'
    REFUNDED = 'refunded', 'Refunded'

    # Exceptions
    REJECTED = 'rejected', 'Rejected'
    CANCELLED_BY_CUSTOMER = 'cancelled_by_customer', 'Cancelled by Customer'
    PICKUP_FAILED = 'pickup_failed', 'Pickup Failed'
    PICKUP_CANCELLED = 'pickup_cancelled', 'Pickup Cancelled'
    DISPUTED = 'disputed', 'Disputed'


WEBHOOK_STATUS_RANK = {
    ReturnStatus.PICKUP_SCHEDULED: 10,
    ReturnStatus.PICKUP_FAILED: 11,
    ReturnStatus.PICKUP_CANCELLED: 12,
    ReturnStatus.PICKED_UP: 20,
    ReturnStatus.IN_TRANSIT: 30,
    ReturnStatus.OUT_FOR_DELIVERY: 40,
    ReturnStatus.DELIVERED_TO_SELLER: 50,
}

UNRANKED = 0

TERMINAL_RETURN_STATUSES = frozenset({
    ReturnStatus.REFUNDED,
    ReturnStatus.REJECTED,
    ReturnStatus.CANCELLED_BY_CUSTOMER,
})


def normalize_status(status):
    return str(status or '').strip().lower()


def rank_of(status):
    """Rank of a status, or UNRANKED (0) for anything outside the webhook subset."""
    return WEBHOOK_STATUS_RANK.get(normalize_status(status), UNRANKED)


def is_webhook_allowed(status):
    """Only ranked statuses may originate a webhook-driven transition."""
    return normalize_status(status) in WEBHOOK_STATUS_RANK


def is_known_status(status):
    return normalize_status(status) in ReturnStatus.values
