"""
Returns Module - Partner Status Mapping

Translates a logistics partner's raw status string into our ReturnStatus.

An unknown status is NOT an error: the webhook still records the raw event
on the shipment for audit, it just does not touch the return. New partner
statuses therefore show up in the logs instead of corrupting return state.
"""

from .statuses import ReturnStatus

# partner -> ((synonyms, internal status), ...)
PARTNER_STATUS_SYNONYMS = {
    'everestx': (
        # booking / pickup scheduling
        (('BOOKED', 'CREATED', 'PICKUP_SCHEDULED'), ReturnStatus.PICKUP_SCHEDULED),
        # pickup executed
        (('PICKED_UP', 'PICKEDUP', 'COLLECTED'), ReturnStatus.PICKED_UP),
        # transit
        (('IN_TRANSIT', 'ON_ROUTE', 'INTRANSIT'), ReturnStatus.IN_TRANSIT),
        (('OUT_FOR_DELIVERY', 'OFD'), ReturnStatus.OUT_FOR_DELIVERY),
        # delivered back to the seller
        (('DELIVERED',), ReturnStatus.DELIVERED_TO_SELLER),
        # exceptions
        (('PICKUP_FAILED', 'FAILED'), ReturnStatus.PICKUP_FAILED),
        (('CANCELLED',), ReturnStatus.PICKUP_CANCELLED),
    ),
}


def normalize_partner_status(raw_status):
    return str(raw_status or '').strip().upper()


def map_partner_status(raw_status, partner='everestx'):
    """Internal status value for a partner status, or None if there is no mapping."""
    partner_status = normalize_partner_status(raw_status)
    if not partner_status:
        return None

    for synonyms, return_status in PARTNER_STATUS_SYNONYMS.get(partner, ()):
        if partner_status in synonyms:
            return return_status.value
    return None
