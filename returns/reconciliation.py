"""
Returns Module - Partner Webhook Reconciliation

Turns one partner status event into (at most) one status change on a
ReturnRequest. Partners deliver events late, twice, and out of order, so an
event has to get through these gates, in order, before anything is written:

     1. Booking must be a return-flow booking      -> else ignored
     2. Event must be new for this booking         -> else deduped
     3. Booking must be the active one             -> else recordedInactive
     4. Partner status must map to ours            -> else mapped: null
     5. Mapped status must be webhook-allowed      -> else ignored
     6. Booking must point at an existing return   -> else note
     7. Event must not be older than the last one  -> else deduped (stale)
     8. Event must not move the rank backwards     -> else ignored (regressive)
     9. Status must actually change                -> else idempotent
    10. Transition must be legal for "system"      -> else ignored
    11. Commit

Every outcome is a normal result, not an exception: a partner's broken feed
must never turn into HTTP errors (and retry storms) on our webhook.

Writes to the return are compare-and-set: the UPDATE only matches if the
return still has the status and last event time we evaluated the gates
against. If another delivery got there first we re-read and re-run gates 7-11.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from django.utils.module_loading import import_string

from .event_identity import derive_event_id, record_shipment_event
from .models import ReturnEvent, ReturnRequest
from .normalizer import normalize_webhook_payload
from .resolvers import is_return_flow, resolve_return, resolve_shipment
from .status_mapping import map_partner_status
from .statuses import ReturnStatus, is_webhook_allowed, normalize_status, rank_of

logger = logging.getLogger('returns')

SYSTEM_ROLE = 'system'


class ReconciliationConflict(Exception):
    """The return kept changing under us; the partner should retry."""


class Outcome(enum.Enum):
    IGNORED = 'ignored'
    DEDUPED = 'deduped'
    RECORDED_INACTIVE = 'recorded_inactive'
    UNMAPPED = 'unmapped'
    NOTED = 'noted'
    STALE = 'stale'
    REGRESSIVE = 'regressive'
    IDEMPOTENT = 'idempotent'
    ILLEGAL_TRANSITION = 'illegal_transition'
    COMMITTED = 'committed'


# Wire flag each outcome is reported under (kept compatible with partner integrations)
RESPONSE_FLAGS = {
    Outcome.IGNORED: 'ignored',
    Outcome.REGRESSIVE: 'ignored',
    Outcome.ILLEGAL_TRANSITION: 'ignored',
    Outcome.DEDUPED: 'deduped',
    Outcome.STALE: 'deduped',
    Outcome.IDEMPOTENT: 'idempotent',
    Outcome.RECORDED_INACTIVE: 'recordedInactive',
}


@dataclass
class ReconciliationResult:
    outcome: Outcome
    event_id: str = ''
    mapped: str = None
    reason: str = ''
    note: str = ''
    previous_status: str = None
    new_status: str = None

    def as_response(self):
        body = {
            'ok': True,
            'outcome': self.outcome.value,
            'eventId': self.event_id,
            'mapped': self.mapped,
        }
        flag = RESPONSE_FLAGS.get(self.outcome)
        if flag:
            body[flag] = True
        if self.reason:
            body['reason'] = self.reason
        if self.note:
            body['note'] = self.note
        if self.outcome == Outcome.COMMITTED:
            body['previousStatus'] = self.previous_status
            body['newStatus'] = self.new_status
        return body


def transition_oracle():
    return import_string(settings.RETURNS_WEBHOOK['TRANSITION_ORACLE'])


def compare_and_set_return(observed, **changes):
    """
    Apply `changes` only if the return still has the status and
    pickup_last_event_at that `observed` was read with.
    """
    guard = Q(pk=observed.pk, status=observed.status)
    if observed.pickup_last_event_at is None:
        guard &= Q(pickup_last_event_at__isnull=True)
    else:
        guard &= Q(pickup_last_event_at=observed.pickup_last_event_at)

    return ReturnRequest.objects.filter(guard).update(**changes) == 1


# ============================================================
# ENTRY POINT
# ============================================================

def reconcile_webhook(payload, partner='everestx', received_at=None):
    """
    Reconcile one partner webhook payload.

    Raises MalformedWebhookError if the payload has no tracking/shipment id.
    Storage errors and ReconciliationConflict propagate (the partner retries,
    and the transaction rollback makes that retry safe).
    """
    config = settings.RETURNS_WEBHOOK

    event = normalize_webhook_payload(
        payload,
        received_at=received_at,
        hash_timestamp_chars=config['HASH_TIMESTAMP_CHARS'],
    )
    event_id = derive_event_id(event)
    mapped = map_partner_status(event.partner_status, partner=partner)

    result = _reconcile(partner, event, event_id, mapped)

    logger.info(
        f"Partner webhook: {partner} | key={event.key} | status={event.partner_status} | "
        f"mapped={mapped} | event={event_id} | outcome={result.outcome.value}"
        + (f" | {result.reason}" if result.reason else '')
        + (f" | {result.note}" if result.note else '')
    )
    return result


def _reconcile(partner, event, event_id, mapped):
    def result(outcome, **extra):
        return ReconciliationResult(outcome, event_id=event_id, mapped=mapped, **extra)

    shipment = resolve_shipment(partner, event.tracking_number, event.external_shipment_id)
    if shipment is None:
        return result(Outcome.IGNORED, reason='shipment_not_found')

    # --- Gate 1: forward deliveries can share identifiers; never record them ---
    if not is_return_flow(shipment, event.payload):
        return result(Outcome.IGNORED, reason='not a returnFlow shipment')

    with transaction.atomic():
        # --- Gate 2: insert-if-absent on the shipment's event log ---
        if not record_shipment_event(shipment, event, event_id, mapped):
            return result(Outcome.DEDUPED)

        # --- Gate 3: superseded bookings are audited but do not drive status ---
        if not shipment.is_active:
            return result(Outcome.RECORDED_INACTIVE)

        # --- Gate 4 + 5 ---
        if mapped is None:
            return result(Outcome.UNMAPPED)
        if not is_webhook_allowed(mapped):
            return result(Outcome.IGNORED, reason='mapped status not webhook-allowed')

        # --- Gate 6: weak reference, "missing" is a normal answer ---
        if shipment.return_id is None:
            return result(Outcome.NOTED, note='returnId missing on shipment')

        return_request = resolve_return(shipment)
        if return_request is None:
            return result(Outcome.NOTED, note='return missing')

        attempts = _max_attempts()
        for attempt in range(1, attempts + 1):
            outcome = _apply_to_return(return_request, shipment, partner, event, event_id, mapped)
            if outcome is not None:
                return outcome

            logger.info(
                f"Return {return_request.pk} changed during reconciliation "
                f"(attempt {attempt}/{attempts}), re-evaluating"
            )
            return_request = resolve_return(shipment)
            if return_request is None:
                return result(Outcome.NOTED, note='return missing')

        # Raised inside the transaction so the event log insert rolls back too
        raise ReconciliationConflict(
            f"Return {shipment.return_id} kept changing; gave up after {attempts} attempts"
        )


def _max_attempts():
    return max(1, int(settings.RETURNS_WEBHOOK['MAX_TRANSITION_ATTEMPTS']))


# ============================================================
# RETURN-LEVEL GATES (7-11)
# ============================================================

def _apply_to_return(return_request, shipment, partner, event, event_id, mapped):
    """
    Run gates 7-11 against one snapshot of the return.

    Returns None if a compare-and-set write lost to a concurrent writer.
    """
    def result(outcome, **extra):
        return ReconciliationResult(outcome, event_id=event_id, mapped=mapped, **extra)

    current_status = return_request.status
    now = timezone.now()

    # --- Gate 7: an older event never overrides a newer one ---
    last_event_at = return_request.pickup_last_event_at
    if last_event_at and event.occurred_at < last_event_at:
        return result(Outcome.STALE, reason='stale_event_time')

    bookkeeping = {
        'pickup_last_event_at': event.occurred_at,
        'pickup_partner': partner,
        'pickup_partner_status': event.partner_status,
        'updated_at': now,
    }

    # --- Gate 8: e.g. OUT_FOR_DELIVERY arriving after DELIVERED (partner clock skew) ---
    current_rank = rank_of(current_status)
    incoming_rank = rank_of(mapped)
    if current_rank and incoming_rank and incoming_rank < current_rank:
        # Show that we heard from the partner, but keep the status
        if not compare_and_set_return(return_request, **bookkeeping):
            return None
        return result(
            Outcome.REGRESSIVE,
            reason=f"regressive_status_rank {current_status}({current_rank}) -> {mapped}({incoming_rank})",
        )

    latest_ids = {}
    if event.tracking_number:
        latest_ids['pickup_latest_tracking_number'] = event.tracking_number
    if event.external_shipment_id:
        latest_ids['pickup_latest_external_shipment_id'] = event.external_shipment_id

    # --- Gate 9: already there ---
    if normalize_status(current_status) == normalize_status(mapped):
        if not compare_and_set_return(return_request, **bookkeeping, **latest_ids):
            return None
        return result(Outcome.IDEMPOTENT)

    # --- Gate 10: the return state machine has the last word ---
    if not transition_oracle()(current_status, mapped, SYSTEM_ROLE):
        return result(
            Outcome.ILLEGAL_TRANSITION,
            reason=f"cannot transition {current_status} -> {mapped} as system",
        )

    # --- Gate 11: commit ---
    changes = {
        'status': mapped,
        'pickup_active_booking_id': shipment.pk,
        **bookkeeping,
        **latest_ids,
    }

    # statusUpdatedAt is partner event time and never moves backwards
    if return_request.status_updated_at is None or event.occurred_at >= return_request.status_updated_at:
        changes['status_updated_at'] = event.occurred_at

    # Inspection SLA starts from the partner's delivery time, not from when
    # the webhook reached us, so late webhooks do not eat the seller's window.
    if mapped == ReturnStatus.DELIVERED_TO_SELLER:
        sla_hours = settings.RETURNS_WEBHOOK['INSPECTION_SLA_HOURS']
        changes['sla_inspect_due_at'] = event.occurred_at + timedelta(hours=sla_hours)

    if not compare_and_set_return(return_request, **changes):
        return None

    ReturnEvent.objects.create(
        return_request_id=return_request.pk,
        at=event.occurred_at,
        actor_role=SYSTEM_ROLE,
        actor_id=f"{partner}_webhook",
        event_type=f"{partner.upper()}_STATUS",
        meta={
            'partnerStatus': event.partner_status,
            'mapped': mapped,
            'eventId': event_id,
            'from': current_status,
            'bookingId': shipment.pk,
        },
    )

    return result(Outcome.COMMITTED, previous_status=current_status, new_status=mapped)
