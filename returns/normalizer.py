"""
Returns Module - Webhook Payload Normalizer

Partners are not consistent about field names. EverestX alone has sent the
tracking number as `trackingNumber`, `awb` or `waybill`, and the event time
in half a dozen places. This module pulls the fields we care about out of any
of those shapes into one WebhookEvent.

Example payload:
{
    "trackingNumber": "EVX123456",
    "shipmentId": "65f0c1...",
    "status": "PICKED_UP",
    "timestamp": "2026-03-01T10:15:00Z",
    "eventId": "evt_001"              # optional
}
"""

from dataclasses import dataclass, field
from datetime import datetime, time, timezone as dt_timezone

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .status_mapping import normalize_partner_status

TRACKING_FIELDS = ('trackingNumber', 'awb', 'waybill')
SHIPMENT_ID_FIELDS = ('shipmentId', '_id')
STATUS_FIELDS = ('status', 'shipmentStatus')

# Checked in order; the first one that parses wins
TIMESTAMP_CANDIDATES = (
    ('timestamp',),
    ('event', 'timestamp'),
    ('event', 'createdAt'),
    ('createdAt',),
    ('event', 'at'),
    ('eventTime',),
)

# Raw strings used for the content hash, before falling back to the parsed time
HASH_TIMESTAMP_FIELDS = ('eventTime', 'timestamp')

DEFAULT_HASH_TIMESTAMP_CHARS = 13  # 'YYYY-MM-DDTHH'


class MalformedWebhookError(Exception):
    """The payload cannot be tied to any shipment."""


@dataclass(frozen=True)
class WebhookEvent:
    tracking_number: str
    external_shipment_id: str
    partner_status_raw: str
    partner_status: str
    occurred_at: datetime
    hash_timestamp: str
    explicit_event_id: str = ''
    payload: dict = field(default_factory=dict, compare=False, repr=False)

    @property
    def key(self):
        """Tracking number if we have one, otherwise the partner's shipment id."""
        return self.tracking_number or self.external_shipment_id


def _text(value):
    if value is None or isinstance(value, (dict, list, bool)):
        return ''
    return str(value).strip()


def _first_text(payload, fields):
    for name in fields:
        value = _text(payload.get(name))
        if value:
            return value
    return ''


def _dig(payload, path):
    value = payload
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def parse_timestamp(value):
    """
    Parse a partner timestamp into an aware datetime, or None.

    Accepts ISO-8601 datetimes (naive ones are taken as UTC), plain dates,
    and numbers as epoch milliseconds.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=dt_timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    text = _text(value)
    if not text:
        return None

    try:
        parsed = parse_datetime(text)
        if parsed is None:
            day = parse_date(text)
            if day is None:
                return None
            parsed = datetime.combine(day, time.min)
    except ValueError:
        # Well-formed but impossible, e.g. month 13
        return None

    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def resolve_event_time(payload, received_at):
    for path in TIMESTAMP_CANDIDATES:
        parsed = parse_timestamp(_dig(payload, path))
        if parsed is not None:
            return parsed
    return received_at


def _hash_source(payload, occurred_at):
    """
    The raw ISO string the partner sent, or the resolved time in UTC ISO form.

    Only ISO strings are hashed raw: a prefix of an epoch number is not an hour.
    """
    for name in HASH_TIMESTAMP_FIELDS:
        value = payload.get(name)
        if isinstance(value, str) and _text(value) and parse_timestamp(value) is not None:
            return _text(value)
    return occurred_at.astimezone(dt_timezone.utc).isoformat()


def normalize_webhook_payload(payload, received_at=None, hash_timestamp_chars=DEFAULT_HASH_TIMESTAMP_CHARS):
    if not isinstance(payload, dict):
        raise MalformedWebhookError('Payload must be a JSON object')

    tracking_number = _first_text(payload, TRACKING_FIELDS)
    external_shipment_id = _first_text(payload, SHIPMENT_ID_FIELDS)
    if not tracking_number and not external_shipment_id:
        raise MalformedWebhookError('Missing tracking/shipment id')

    partner_status_raw = _first_text(payload, STATUS_FIELDS)
    occurred_at = resolve_event_time(payload, received_at or timezone.now())

    # Coarsen to a fixed-width prefix so sub-field jitter in partner
    # timestamps still hashes to the same event.
    hash_source = _hash_source(payload, occurred_at)

    return WebhookEvent(
        tracking_number=tracking_number,
        external_shipment_id=external_shipment_id,
        partner_status_raw=partner_status_raw,
        partner_status=normalize_partner_status(partner_status_raw),
        occurred_at=occurred_at,
        hash_timestamp=hash_source[:hash_timestamp_chars],
        explicit_event_id=_text(payload.get('eventId')),
        payload=payload,
    )
