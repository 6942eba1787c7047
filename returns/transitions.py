"""
Returns Module - Default Transition Rules

Who may move a return from one status to another. The webhook engine only
ever asks as "system"; sellers, admins and customers use the same table from
their own flows.

The engine loads the rule function from
settings.RETURNS_WEBHOOK['TRANSITION_ORACLE'], so a deployment can point it
at its own implementation.
"""

from .statuses import ReturnStatus, TERMINAL_RETURN_STATUSES, is_known_status, normalize_status

ACTOR_ROLES = ('customer', 'seller', 'admin', 'system')

S = ReturnStatus

# {from_status: {role: [allowed to_status, ...]}}. Missing role = nothing allowed.
TRANSITIONS = {
    S.PENDING: {
        'customer': [S.CANCELLED_BY_CUSTOMER],
        'seller': [S.UNDER_REVIEW],
        'admin': [S.UNDER_REVIEW],
        'system': [S.UNDER_REVIEW],
    },
    S.UNDER_REVIEW: {
        'customer': [S.CANCELLED_BY_CUSTOMER],
        'seller': [S.APPROVED_AWAITING_PICKUP, S.REJECTED],
        'admin': [S.APPROVED_AWAITING_PICKUP, S.REJECTED],
    },
    # Booking a pickup is an admin action, never a webhook
    S.APPROVED_AWAITING_PICKUP: {
        'admin': [S.PICKUP_SCHEDULED, S.PICKUP_CANCELLED],
    },
    S.PICKUP_SCHEDULED: {
        'system': [S.PICKED_UP, S.PICKUP_FAILED, S.PICKUP_CANCELLED],
        'admin': [S.PICKUP_CANCELLED],
    },
    # Rebooking after a failure/cancellation is admin only
    S.PICKUP_FAILED: {
        'admin': [S.PICKUP_SCHEDULED, S.PICKUP_CANCELLED],
    },
    S.PICKUP_CANCELLED: {
        'admin': [S.PICKUP_SCHEDULED],
    },
    S.PICKED_UP: {
        'system': [S.IN_TRANSIT, S.OUT_FOR_DELIVERY, S.DELIVERED_TO_SELLER],
    },
    S.IN_TRANSIT: {
        'system': [S.OUT_FOR_DELIVERY, S.DELIVERED_TO_SELLER],
    },
    S.OUT_FOR_DELIVERY: {
        'system': [S.DELIVERED_TO_SELLER],
    },
    S.DELIVERED_TO_SELLER: {
        'seller': [S.RECEIVED_BY_SELLER],
        'admin': [S.RECEIVED_BY_SELLER],
    },
    S.RECEIVED_BY_SELLER: {
        'seller': [S.INSPECTION_APPROVED, S.INSPECTION_REJECTED],
        'admin': [S.INSPECTION_APPROVED, S.INSPECTION_REJECTED],
    },
    S.INSPECTION_APPROVED: {
        'admin': [S.REFUND_QUEUED],
    },
    S.REFUND_QUEUED: {
        'system': [S.REFUNDED],
        'admin': [S.REFUNDED],
    },
    S.INSPECTION_REJECTED: {
        'admin': [S.DISPUTED, S.REJECTED],
    },
    S.DISPUTED: {
        'admin': [S.REFUND_QUEUED, S.REJECTED],
    },
}


def normalize_role(actor_role):
    role = str(actor_role or '').strip().lower()
    return role if role in ACTOR_ROLES else 'system'


def can_transition_return_status(current_status, proposed_status, actor_role):
    """True if actor_role may move a return from current_status to proposed_status."""
    current = normalize_status(current_status)
    proposed = normalize_status(proposed_status)

    if not is_known_status(current) or not is_known_status(proposed):
        return False
    if current in TERMINAL_RETURN_STATUSES:
        return False

    allowed = TRANSITIONS.get(current, {}).get(normalize_role(actor_role), [])
    return proposed in allowed
