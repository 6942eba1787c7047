"""
Returns Module - Tests

These tests validate partner webhook reconciliation:
1. Status vocabulary, transition rules and partner status mapping
2. Payload normalization and event identity
3. Webhook transport (auth, malformed payloads, server errors)
4. Reconciliation gates (dedup, stale, regressive, idempotent, illegal, commit)
5. Concurrency (insert-if-absent, compare-and-set retries)
6. Tracking APIs and the inspection SLA escalation job

Run tests with: python manage.py test returns
"""

import threading
from datetime import datetime, timedelta, timezone as dt_timezone
from unittest import mock

from django.conf import settings
from django.db import DatabaseError, IntegrityError, connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from .event_identity import derive_event_id, fingerprint, record_shipment_event
from .models import ReturnEvent, ReturnRequest, ReturnShipment, ReturnShipmentEvent
from .normalizer import MalformedWebhookError, normalize_webhook_payload, parse_timestamp
from .reconciliation import (
    Outcome,
    ReconciliationConflict,
    compare_and_set_return,
    reconcile_webhook,
)
from .status_mapping import map_partner_status
from .statuses import ReturnStatus, is_webhook_allowed, rank_of
from .tasks import escalate_overdue_inspections
from .transitions import can_transition_return_status

T0 = datetime(2026, 3, 1, 8, 0, tzinfo=dt_timezone.utc)
T1 = datetime(2026, 3, 1, 10, 15, tzinfo=dt_timezone.utc)
T2 = datetime(2026, 3, 2, 14, 30, tzinfo=dt_timezone.utc)
T3 = datetime(2026, 3, 2, 16, 5, tzinfo=dt_timezone.utc)
T4 = datetime(2026, 3, 3, 9, 0, tzinfo=dt_timezone.utc)


def webhook_settings(**overrides):
    return {**settings.RETURNS_WEBHOOK, 'SECRET': '', **overrides}


def allow_everything(current_status, proposed_status, actor_role):
    return True


# ============================================================
# STATUS VOCABULARY & TRANSITION RULES
# ============================================================

class StatusVocabularyTests(SimpleTestCase):

    def test_ranks_follow_pickup_progress(self):
        self.assertLess(rank_of('pickup_scheduled'), rank_of('pickup_failed'))
        self.assertLess(rank_of('pickup_failed'), rank_of('pickup_cancelled'))
        self.assertLess(rank_of('pickup_cancelled'), rank_of('picked_up'))
        self.assertLess(rank_of('picked_up'), rank_of('in_transit'))
        self.assertLess(rank_of('in_transit'), rank_of('out_for_delivery'))
        self.assertLess(rank_of('out_for_delivery'), rank_of('delivered_to_seller'))

    def test_statuses_outside_webhook_subset_are_unranked(self):
        self.assertEqual(rank_of('received_by_seller'), 0)
        self.assertEqual(rank_of('pending'), 0)
        self.assertEqual(rank_of('something_new'), 0)
        self.assertEqual(rank_of(None), 0)

    def test_rank_normalizes_case_and_whitespace(self):
        self.assertEqual(rank_of('  Delivered_To_Seller '), 50)

    def test_only_ranked_statuses_are_webhook_allowed(self):
        self.assertTrue(is_webhook_allowed('in_transit'))
        self.assertTrue(is_webhook_allowed('pickup_cancelled'))
        self.assertFalse(is_webhook_allowed('refunded'))
        self.assertFalse(is_webhook_allowed('received_by_seller'))


class TransitionRulesTests(SimpleTestCase):

    def test_system_moves_pickup_forward(self):
        self.assertTrue(can_transition_return_status('pickup_scheduled', 'picked_up', 'system'))
        self.assertTrue(can_transition_return_status('picked_up', 'delivered_to_seller', 'system'))

    def test_system_cannot_schedule_pickup(self):
        self.assertFalse(can_transition_return_status('approved_awaiting_pickup', 'pickup_scheduled', 'system'))
        self.assertTrue(can_transition_return_status('approved_awaiting_pickup', 'pickup_scheduled', 'admin'))

    def test_terminal_statuses_allow_nothing(self):
        self.assertFalse(can_transition_return_status('refunded', 'refund_queued', 'admin'))

    def test_unknown_status_is_illegal(self):
        self.assertFalse(can_transition_return_status('teleported', 'picked_up', 'system'))

    def test_unknown_role_is_treated_as_system(self):
        self.assertTrue(can_transition_return_status('in_transit', 'out_for_delivery', 'robot'))


# ============================================================
# PARTNER STATUS MAPPING
# ============================================================

class StatusMappingTests(SimpleTestCase):

    def test_synonyms_map_to_same_status(self):
        for raw in ['BOOKED', 'CREATED', 'PICKUP_SCHEDULED']:
            self.assertEqual(map_partner_status(raw), 'pickup_scheduled')
        for raw in ['IN_TRANSIT', 'ON_ROUTE', 'INTRANSIT']:
            self.assertEqual(map_partner_status(raw), 'in_transit')

    def test_delivered_means_delivered_to_seller(self):
        self.assertEqual(map_partner_status('DELIVERED'), 'delivered_to_seller')

    def test_mapping_ignores_case_and_whitespace(self):
        self.assertEqual(map_partner_status('  ofd '), 'out_for_delivery')

    def test_unknown_status_has_no_mapping(self):
        self.assertIsNone(map_partner_status('LOST_IN_SPACE'))
        self.assertIsNone(map_partner_status(''))
        self.assertIsNone(map_partner_status(None))

    def test_unknown_partner_has_no_mapping(self):
        self.assertIsNone(map_partner_status('DELIVERED', partner='acme'))


# ============================================================
# NORMALIZER & EVENT IDENTITY
# ============================================================

class NormalizerTests(SimpleTestCase):

    def test_tracking_number_from_alternate_fields(self):
        event = normalize_webhook_payload({'awb': ' AWB-1 ', 'status': 'booked'})
        self.assertEqual(event.tracking_number, 'AWB-1')
        self.assertEqual(event.partner_status, 'BOOKED')
        self.assertEqual(event.key, 'AWB-1')

    def test_shipment_id_used_as_key_without_tracking(self):
        event = normalize_webhook_payload({'_id': 'shp_9', 'shipmentStatus': 'DELIVERED'})
        self.assertEqual(event.external_shipment_id, 'shp_9')
        self.assertEqual(event.key, 'shp_9')
        self.assertEqual(event.partner_status, 'DELIVERED')

    def test_missing_identifiers_is_malformed(self):
        with self.assertRaises(MalformedWebhookError):
            normalize_webhook_payload({'status': 'DELIVERED'})

    def test_non_object_payload_is_malformed(self):
        with self.assertRaises(MalformedWebhookError):
            normalize_webhook_payload(['EVX1'])

    def test_nested_event_timestamp_used(self):
        event = normalize_webhook_payload({
            'awb': 'A1',
            'event': {'createdAt': '2026-03-01T10:15:00Z'},
        })
        self.assertEqual(event.occurred_at, T1)

    def test_unparseable_candidate_falls_through_to_next(self):
        event = normalize_webhook_payload({
            'awb': 'A1',
            'timestamp': 'yesterday-ish',
            'eventTime': '2026-03-02T14:30:00+00:00',
        })
        self.assertEqual(event.occurred_at, T2)

    def test_no_timestamp_uses_receipt_time(self):
        event = normalize_webhook_payload({'awb': 'A1'}, received_at=T3)
        self.assertEqual(event.occurred_at, T3)
        self.assertEqual(event.hash_timestamp, '2026-03-02T16')

    def test_hash_timestamp_is_hour_prefix_of_raw_string(self):
        event = normalize_webhook_payload({'awb': 'A1', 'eventTime': '2026-03-01T10:59:59.123Z'})
        self.assertEqual(event.hash_timestamp, '2026-03-01T10')

    def test_naive_timestamp_is_utc(self):
        self.assertEqual(parse_timestamp('2026-03-01T10:15:00'), T1)

    def test_epoch_milliseconds(self):
        self.assertEqual(parse_timestamp(int(T1.timestamp() * 1000)), T1)

    def test_impossible_date_does_not_parse(self):
        self.assertIsNone(parse_timestamp('2026-13-45T10:00:00Z'))


class EventIdentityTests(SimpleTestCase):

    def _event(self, **payload):
        return normalize_webhook_payload({'trackingNumber': 'EVX1', **payload})

    def test_explicit_event_id_wins(self):
        event = self._event(status='DELIVERED', eventId=' evt-42 ')
        self.assertEqual(derive_event_id(event), 'evt-42')

    def test_hash_id_format(self):
        event_id = derive_event_id(self._event(status='DELIVERED', timestamp='2026-03-01T10:15:00Z'))
        self.assertTrue(event_id.startswith('h:'))
        self.assertEqual(len(event_id), 2 + 24)
        self.assertEqual(event_id, 'h:' + fingerprint('EVX1', 'DELIVERED', '2026-03-01T10'))

    def test_jitter_within_the_hour_collides(self):
        first = derive_event_id(self._event(status='delivered', timestamp='2026-03-01T10:15:00Z'))
        retry = derive_event_id(self._event(status='DELIVERED', timestamp='2026-03-01T10:16:30Z'))
        self.assertEqual(first, retry)

    def test_different_hour_or_status_does_not_collide(self):
        base = derive_event_id(self._event(status='DELIVERED', timestamp='2026-03-01T10:15:00Z'))
        later = derive_event_id(self._event(status='DELIVERED', timestamp='2026-03-01T11:15:00Z'))
        other = derive_event_id(self._event(status='OFD', timestamp='2026-03-01T10:15:00Z'))
        self.assertNotEqual(base, later)
        self.assertNotEqual(base, other)

    def test_epoch_millisecond_jitter_within_the_hour_collides(self):
        at_ms = int(T1.timestamp() * 1000)
        first = self._event(status='PICKED_UP', timestamp=at_ms)
        retry = self._event(status='PICKED_UP', timestamp=at_ms + 60_000)

        self.assertEqual(first.hash_timestamp, '2026-03-01T10')
        self.assertEqual(derive_event_id(first), derive_event_id(retry))

    def test_epoch_millisecond_next_hour_does_not_collide(self):
        at_ms = int(T1.timestamp() * 1000)
        first = derive_event_id(self._event(status='PICKED_UP', timestamp=at_ms))
        later = derive_event_id(self._event(status='PICKED_UP', timestamp=at_ms + 3_600_000))
        self.assertNotEqual(first, later)


# ============================================================
# BASE TEST CASE FOR WEBHOOK TESTS
# ============================================================

@override_settings(RETURNS_WEBHOOK=webhook_settings())
class BaseWebhookTestCase(TestCase):
    """
    One return at pickup_scheduled with an active EverestX return booking.
    """

    def setUp(self):
        self.client = APIClient()
        self.base_url = '/api/v1/returns'
        self.webhook_url = f'{self.base_url}/webhook/everestx/'

        self.return_request = ReturnRequest.objects.create(
            order_number='OD-TEST-001',
            customer_id=1001,
            status=ReturnStatus.PICKUP_SCHEDULED,
        )
        self.shipment = ReturnShipment.objects.create(
            partner='everestx',
            tracking_number='EVX1001',
            external_shipment_id='shp_1001',
            return_flow=True,
            is_active=True,
            return_id=self.return_request.id,
        )

    def _post_event(self, partner_status, at, **extra):
        payload = {
            'trackingNumber': 'EVX1001',
            'status': partner_status,
            'timestamp': at.isoformat(),
        }
        payload.update(extra)
        return self.client.post(self.webhook_url, payload, format='json')

    def _set_return(self, **fields):
        ReturnRequest.objects.filter(pk=self.return_request.pk).update(**fields)
        self.return_request.refresh_from_db()

    def _reload(self):
        self.return_request.refresh_from_db()
        return self.return_request


# ============================================================
# TRANSPORT: AUTH, SHAPE, ERRORS
# ============================================================

class WebhookTransportTests(BaseWebhookTestCase):

    def test_no_secret_configured_accepts_everything(self):
        response = self._post_event('PICKED_UP', T1)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['ok'])

    @override_settings(RETURNS_WEBHOOK=webhook_settings(SECRET='s3cret'))
    def test_missing_token_rejected_without_touching_storage(self):
        response = self._post_event('PICKED_UP', T1)
        self.assertEqual(response.status_code, 401)
        self.assertEqual(ReturnShipmentEvent.objects.count(), 0)
        self.assertEqual(self._reload().status, 'pickup_scheduled')

    @override_settings(RETURNS_WEBHOOK=webhook_settings(SECRET='s3cret'))
    def test_wrong_token_rejected(self):
        response = self.client.post(
            self.webhook_url,
            {'trackingNumber': 'EVX1001', 'status': 'PICKED_UP'},
            format='json',
            HTTP_X_INTERNAL_TOKEN='nope',
        )
        self.assertEqual(response.status_code, 401)

    @override_settings(RETURNS_WEBHOOK=webhook_settings(SECRET='s3cret'))
    def test_matching_token_accepted(self):
        response = self.client.post(
            self.webhook_url,
            {'trackingNumber': 'EVX1001', 'status': 'PICKED_UP', 'timestamp': T1.isoformat()},
            format='json',
            HTTP_X_INTERNAL_TOKEN='s3cret',
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['outcome'], 'committed')

    def test_missing_identifiers_is_bad_request(self):
        response = self.client.post(self.webhook_url, {'status': 'PICKED_UP'}, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(ReturnShipmentEvent.objects.count(), 0)

    def test_invalid_json_is_bad_request(self):
        response = self.client.post(self.webhook_url, data='{not json', content_type='application/json')
        self.assertEqual(response.status_code, 400)

    def test_non_json_content_type_is_bad_request(self):
        response = self.client.post(self.webhook_url, data='trackingNumber=EVX1001', content_type='text/plain')
        self.assertEqual(response.status_code, 400)
        self.assertIn('message', response.data)
        self.assertEqual(ReturnShipmentEvent.objects.count(), 0)

    def test_storage_failure_is_server_error(self):
        with mock.patch('returns.webhooks.reconcile_webhook', side_effect=DatabaseError('db down')):
            response = self._post_event('PICKED_UP', T1)
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data, {'message': 'Server error'})

    def test_unknown_shipment_is_soft_ignored(self):
        response = self.client.post(
            self.webhook_url,
            {'trackingNumber': 'NOPE', 'status': 'PICKED_UP'},
            format='json',
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['ignored'])
        self.assertEqual(response.data['reason'], 'shipment_not_found')


# ============================================================
# RECONCILIATION GATES
# ============================================================

class ReconciliationTests(BaseWebhookTestCase):

    def test_pickup_commits_new_status(self):
        """Scenario A: pickup_scheduled + PICKED_UP -> picked_up."""
        response = self._post_event('PICKED_UP', T1)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['outcome'], 'committed')
        self.assertEqual(response.data['mapped'], 'picked_up')
        self.assertTrue(response.data['eventId'].startswith('h:'))

        ret = self._reload()
        self.assertEqual(ret.status, 'picked_up')
        self.assertEqual(ret.status_updated_at, T1)
        self.assertEqual(ret.pickup_last_event_at, T1)
        self.assertEqual(ret.pickup_partner, 'everestx')
        self.assertEqual(ret.pickup_partner_status, 'PICKED_UP')
        self.assertEqual(ret.pickup_active_booking_id, self.shipment.id)
        self.assertEqual(ret.pickup_latest_tracking_number, 'EVX1001')

        event = ReturnEvent.objects.get(return_request=ret)
        self.assertEqual(event.actor_role, 'system')
        self.assertEqual(event.actor_id, 'everestx_webhook')
        self.assertEqual(event.event_type, 'EVERESTX_STATUS')
        self.assertEqual(event.meta['eventId'], response.data['eventId'])

        self.shipment.refresh_from_db()
        self.assertEqual(self.shipment.status, 'PICKED_UP')
        self.assertEqual(self.shipment.last_webhook_at, T1)

    def test_same_event_twice_commits_once(self):
        first = self._post_event('PICKED_UP', T1)
        second = self._post_event('PICKED_UP', T1 + timedelta(minutes=3))

        self.assertEqual(first.data['outcome'], 'committed')
        self.assertTrue(second.data['deduped'])
        self.assertEqual(second.data['eventId'], first.data['eventId'])
        self.assertEqual(ReturnEvent.objects.count(), 1)
        self.assertEqual(ReturnShipmentEvent.objects.count(), 1)

    def test_epoch_millisecond_retry_is_deduped(self):
        at_ms = int(T1.timestamp() * 1000)
        payload = {'trackingNumber': 'EVX1001', 'status': 'PICKED_UP'}

        first = self.client.post(self.webhook_url, {**payload, 'timestamp': at_ms}, format='json')
        retry = self.client.post(self.webhook_url, {**payload, 'timestamp': at_ms + 60_000}, format='json')

        self.assertEqual(first.data['outcome'], 'committed')
        self.assertTrue(retry.data['deduped'])
        self.assertEqual(ReturnShipmentEvent.objects.count(), 1)
        self.assertEqual(self._reload().pickup_last_event_at, T1)

    def test_explicit_event_id_deduplicates(self):
        self._post_event('PICKED_UP', T1, eventId='evt-1')
        replay = self._post_event('IN_TRANSIT', T2, eventId='evt-1')

        self.assertTrue(replay.data['deduped'])
        self.assertEqual(self._reload().status, 'picked_up')

    def test_older_event_after_newer_is_stale(self):
        """Scenario B: BOOKED at t0 replayed after PICKED_UP at t1."""
        self._post_event('PICKED_UP', T1)
        response = self._post_event('BOOKED', T0)

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['deduped'])
        self.assertEqual(response.data['reason'], 'stale_event_time')

        ret = self._reload()
        self.assertEqual(ret.status, 'picked_up')
        self.assertEqual(ret.status_updated_at, T1)
        self.assertEqual(ret.pickup_last_event_at, T1)

    def test_same_timestamp_is_not_stale(self):
        self._post_event('PICKED_UP', T1)
        response = self._post_event('IN_TRANSIT', T1)
        self.assertEqual(response.data['outcome'], 'committed')

    def test_out_for_delivery_after_delivered_is_regressive(self):
        """Scenario C: partner lag sends OFD (later timestamp) after DELIVERED."""
        self._set_return(status=ReturnStatus.OUT_FOR_DELIVERY, pickup_last_event_at=T1)

        delivered = self._post_event('DELIVERED', T2)
        self.assertEqual(delivered.data['outcome'], 'committed')

        lagging = self._post_event('OUT_FOR_DELIVERY', T3)
        self.assertTrue(lagging.data['ignored'])
        self.assertIn('regressive_status_rank', lagging.data['reason'])

        ret = self._reload()
        self.assertEqual(ret.status, 'delivered_to_seller')
        self.assertEqual(ret.status_updated_at, T2)
        self.assertEqual(ret.pickup_last_event_at, T3)
        self.assertEqual(ret.pickup_partner_status, 'OUT_FOR_DELIVERY')
        self.assertEqual(ReturnEvent.objects.filter(return_request=ret).count(), 1)

    def test_failed_pickup_after_in_transit_is_regressive(self):
        self._set_return(status=ReturnStatus.IN_TRANSIT, pickup_last_event_at=T1)
        response = self._post_event('PICKUP_FAILED', T2)

        self.assertEqual(response.data['outcome'], 'regressive')
        self.assertEqual(self._reload().status, 'in_transit')

    def test_same_status_is_idempotent(self):
        self._post_event('PICKED_UP', T1)
        response = self._post_event('COLLECTED', T2, shipmentId='shp_1001')

        self.assertTrue(response.data['idempotent'])
        ret = self._reload()
        self.assertEqual(ret.status, 'picked_up')
        self.assertEqual(ret.status_updated_at, T1)
        self.assertEqual(ret.pickup_last_event_at, T2)
        self.assertEqual(ret.pickup_latest_external_shipment_id, 'shp_1001')
        self.assertEqual(ReturnEvent.objects.count(), 1)

    def test_illegal_transition_is_ignored(self):
        self._set_return(status=ReturnStatus.APPROVED_AWAITING_PICKUP)
        response = self._post_event('BOOKED', T1)

        self.assertTrue(response.data['ignored'])
        self.assertEqual(
            response.data['reason'],
            'cannot transition approved_awaiting_pickup -> pickup_scheduled as system',
        )
        self.assertEqual(self._reload().status, 'approved_awaiting_pickup')
        self.assertEqual(ReturnEvent.objects.count(), 0)

    @override_settings(RETURNS_WEBHOOK=webhook_settings(TRANSITION_ORACLE='returns.tests.allow_everything'))
    def test_unranked_current_status_never_blocks_on_rank(self):
        self._set_return(status=ReturnStatus.UNDER_REVIEW)
        response = self._post_event('IN_TRANSIT', T1)

        self.assertEqual(response.data['outcome'], 'committed')
        self.assertEqual(self._reload().status, 'in_transit')

    def test_status_updated_at_never_moves_backwards(self):
        later = T4
        self._set_return(status_updated_at=later)
        self._post_event('PICKED_UP', T1)

        ret = self._reload()
        self.assertEqual(ret.status, 'picked_up')
        self.assertEqual(ret.status_updated_at, later)

    def test_lookup_by_shipment_id(self):
        response = self.client.post(
            self.webhook_url,
            {'shipmentId': 'shp_1001', 'status': 'PICKED_UP', 'timestamp': T1.isoformat()},
            format='json',
        )
        self.assertEqual(response.data['outcome'], 'committed')
        self.assertEqual(self._reload().pickup_latest_external_shipment_id, 'shp_1001')


class DeliveredSlaTests(BaseWebhookTestCase):

    def setUp(self):
        super().setUp()
        self._set_return(status=ReturnStatus.OUT_FOR_DELIVERY, pickup_last_event_at=T1)

    def test_delivered_sets_inspection_deadline_from_event_time(self):
        self._post_event('DELIVERED', T2)
        self.assertEqual(self._reload().sla_inspect_due_at, T2 + timedelta(hours=72))

    @override_settings(RETURNS_WEBHOOK=webhook_settings(INSPECTION_SLA_HOURS=24))
    def test_sla_hours_come_from_settings(self):
        self._post_event('DELIVERED', T2)
        self.assertEqual(self._reload().sla_inspect_due_at, T2 + timedelta(hours=24))

    def test_replayed_delivered_does_not_reset_deadline(self):
        self._post_event('DELIVERED', T2)
        due = self._reload().sla_inspect_due_at

        replay = self._post_event('DELIVERED', T2)
        late_copy = self._post_event('DELIVERED', T4)

        self.assertTrue(replay.data['deduped'])
        self.assertTrue(late_copy.data['idempotent'])
        self.assertEqual(self._reload().sla_inspect_due_at, due)


class BookingFilterTests(BaseWebhookTestCase):

    def test_forward_delivery_booking_is_ignored_and_not_recorded(self):
        ReturnShipment.objects.filter(pk=self.shipment.pk).update(return_flow=False)
        response = self._post_event('DELIVERED', T1)

        self.assertTrue(response.data['ignored'])
        self.assertEqual(response.data['reason'], 'not a returnFlow shipment')
        self.assertEqual(ReturnShipmentEvent.objects.count(), 0)
        self.assertEqual(ReturnEvent.objects.count(), 0)
        self.assertEqual(self._reload().status, 'pickup_scheduled')

    def test_return_flow_marker_in_booking_snapshot(self):
        ReturnShipment.objects.filter(pk=self.shipment.pk).update(
            return_flow=False, payload_snapshot={'returnFlow': 'true'},
        )
        response = self._post_event('PICKED_UP', T1)
        self.assertEqual(response.data['outcome'], 'committed')

    def test_return_flow_marker_echoed_by_partner(self):
        ReturnShipment.objects.filter(pk=self.shipment.pk).update(return_flow=False)
        response = self._post_event('PICKED_UP', T1, meta={'returnFlow': True})
        self.assertEqual(response.data['outcome'], 'committed')

    def test_inactive_booking_is_recorded_but_does_not_move_return(self):
        ReturnShipment.objects.filter(pk=self.shipment.pk).update(is_active=False)
        response = self._post_event('PICKED_UP', T1)

        self.assertTrue(response.data['recordedInactive'])
        self.assertEqual(response.data['mapped'], 'picked_up')
        self.assertEqual(ReturnShipmentEvent.objects.filter(shipment=self.shipment).count(), 1)
        self.assertEqual(self._reload().status, 'pickup_scheduled')

    def test_rebooked_pickup_only_active_booking_drives_status(self):
        ReturnShipment.objects.filter(pk=self.shipment.pk).update(is_active=False)
        new_booking = ReturnShipment.objects.create(
            partner='everestx',
            tracking_number='EVX2002',
            return_flow=True,
            is_active=True,
            return_id=self.return_request.id,
        )

        old = self._post_event('PICKED_UP', T1)
        new = self._post_event('PICKED_UP', T1, trackingNumber='EVX2002')

        self.assertEqual(old.data['outcome'], 'recorded_inactive')
        self.assertEqual(new.data['outcome'], 'committed')
        self.assertEqual(self._reload().pickup_active_booking_id, new_booking.id)

    def test_unmapped_status_is_recorded_for_audit(self):
        response = self._post_event('WEIGHT_DISCREPANCY', T1)

        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.data['mapped'])
        self.assertEqual(response.data['outcome'], 'unmapped')

        logged = ReturnShipmentEvent.objects.get(shipment=self.shipment)
        self.assertEqual(logged.partner_status, 'WEIGHT_DISCREPANCY')
        self.assertIsNone(logged.mapped_return_status)
        self.assertEqual(logged.raw['status'], 'WEIGHT_DISCREPANCY')
        self.assertEqual(self._reload().status, 'pickup_scheduled')

    def test_booking_without_return_is_noted(self):
        ReturnShipment.objects.filter(pk=self.shipment.pk).update(return_id=None)
        response = self._post_event('PICKED_UP', T1)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['note'], 'returnId missing on shipment')

    def test_booking_pointing_at_deleted_return_is_noted(self):
        ReturnShipment.objects.filter(pk=self.shipment.pk).update(return_id=999999)
        response = self._post_event('PICKED_UP', T1)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['note'], 'return missing')


# ============================================================
# CONCURRENCY PRIMITIVES
# ============================================================

class ConcurrencyTests(BaseWebhookTestCase):

    def test_insert_if_absent_admits_one_of_two_identical_deliveries(self):
        """Scenario D: the same derived event id can only be logged once."""
        event = normalize_webhook_payload({'trackingNumber': 'EVX1001', 'status': 'PICKED_UP'})
        event_id = derive_event_id(event)

        self.assertTrue(record_shipment_event(self.shipment, event, event_id, 'picked_up'))
        self.assertFalse(record_shipment_event(self.shipment, event, event_id, 'picked_up'))
        self.assertEqual(ReturnShipmentEvent.objects.filter(event_id=event_id).count(), 1)

    def test_same_event_id_allowed_on_different_bookings(self):
        other = ReturnShipment.objects.create(partner='everestx', tracking_number='EVX3003', return_flow=True)
        event = normalize_webhook_payload({'trackingNumber': 'EVX1001', 'status': 'PICKED_UP'})

        self.assertTrue(record_shipment_event(self.shipment, event, 'evt-1', 'picked_up'))
        self.assertTrue(record_shipment_event(other, event, 'evt-1', 'picked_up'))

    def test_integrity_errors_other_than_duplicates_propagate(self):
        event = normalize_webhook_payload({'trackingNumber': 'EVX1001', 'status': 'PICKED_UP'})

        with mock.patch.object(
            ReturnShipmentEvent.objects, 'create',
            side_effect=IntegrityError('FOREIGN KEY constraint failed'),
        ):
            with self.assertRaises(IntegrityError):
                record_shipment_event(self.shipment, event, 'evt-1', 'picked_up')

    def test_integrity_error_on_webhook_is_server_error_not_deduped(self):
        with mock.patch.object(
            ReturnShipmentEvent.objects, 'create',
            side_effect=IntegrityError('FOREIGN KEY constraint failed'),
        ):
            response = self._post_event('PICKED_UP', T1)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(self._reload().status, 'pickup_scheduled')

    def test_compare_and_set_fails_on_stale_snapshot(self):
        snapshot = ReturnRequest.objects.get(pk=self.return_request.pk)
        self._set_return(status=ReturnStatus.PICKED_UP, pickup_last_event_at=T1)

        self.assertFalse(compare_and_set_return(snapshot, status=ReturnStatus.IN_TRANSIT))
        self.assertTrue(compare_and_set_return(self._reload(), status=ReturnStatus.IN_TRANSIT))
        self.assertEqual(self._reload().status, 'in_transit')

    def test_lost_race_is_re_evaluated_against_fresh_state(self):
        self._set_return(status=ReturnStatus.PICKED_UP, pickup_last_event_at=T0)
        real_cas = compare_and_set_return
        calls = []

        def racing_cas(observed, **changes):
            if not calls:
                # A concurrent DELIVERED lands between our read and our write
                ReturnRequest.objects.filter(pk=observed.pk).update(
                    status=ReturnStatus.DELIVERED_TO_SELLER, pickup_last_event_at=T1,
                )
            calls.append(changes)
            return real_cas(observed, **changes)

        with mock.patch('returns.reconciliation.compare_and_set_return', side_effect=racing_cas):
            result = reconcile_webhook({
                'trackingNumber': 'EVX1001', 'status': 'IN_TRANSIT', 'timestamp': T2.isoformat(),
            })

        self.assertEqual(result.outcome, Outcome.REGRESSIVE)
        self.assertEqual(len(calls), 2)
        ret = self._reload()
        self.assertEqual(ret.status, 'delivered_to_seller')
        self.assertEqual(ret.pickup_last_event_at, T2)
        self.assertEqual(ReturnEvent.objects.count(), 0)

    @override_settings(RETURNS_WEBHOOK=webhook_settings(MAX_TRANSITION_ATTEMPTS=2))
    def test_endless_conflicts_fail_loudly_and_roll_back(self):
        with mock.patch('returns.reconciliation.compare_and_set_return', return_value=False):
            with self.assertRaises(ReconciliationConflict):
                reconcile_webhook({'trackingNumber': 'EVX1001', 'status': 'PICKED_UP'})

            response = self._post_event('PICKED_UP', T1)

        self.assertEqual(response.status_code, 500)
        # Event log insert rolled back, so the partner's retry is not deduped
        self.assertEqual(ReturnShipmentEvent.objects.count(), 0)
        self.assertEqual(self._reload().status, 'pickup_scheduled')


@override_settings(RETURNS_WEBHOOK=webhook_settings())
class ConcurrentDeliveryTests(TransactionTestCase):
    """
    The same partner event delivered twice at the same moment, each copy on
    its own thread and database connection.
    """

    def setUp(self):
        self.webhook_url = '/api/v1/returns/webhook/everestx/'
        self.return_request = ReturnRequest.objects.create(
            order_number='OD-RACE-001',
            customer_id=3003,
            status=ReturnStatus.PICKUP_SCHEDULED,
        )
        ReturnShipment.objects.create(
            partner='everestx',
            tracking_number='EVX5005',
            return_flow=True,
            is_active=True,
            return_id=self.return_request.id,
        )
        self.payload = {'trackingNumber': 'EVX5005', 'status': 'PICKED_UP', 'timestamp': T1.isoformat()}

    def _deliver_concurrently(self, copies=2):
        barrier = threading.Barrier(copies)
        responses = []

        def deliver():
            try:
                client = APIClient()
                barrier.wait(timeout=10)
                responses.append(client.post(self.webhook_url, self.payload, format='json'))
            finally:
                connection.close()

        threads = [threading.Thread(target=deliver) for _ in range(copies)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return responses

    def test_identical_deliveries_commit_at_most_once(self):
        responses = self._deliver_concurrently()

        self.assertEqual(len(responses), 2)
        # A loser is either deduped or told to retry (500); never a second commit
        outcomes = [r.data.get('outcome') for r in responses if r.status_code == 200]
        self.assertTrue(all(r.status_code in (200, 500) for r in responses))
        self.assertLessEqual(outcomes.count('committed'), 1)
        self.assertTrue(set(outcomes) <= {'committed', 'deduped'})

        # The partner retries until it gets a 200
        retry = APIClient().post(self.webhook_url, self.payload, format='json')
        self.assertEqual(retry.status_code, 200)

        self.assertEqual(ReturnShipmentEvent.objects.count(), 1)
        self.assertEqual(ReturnEvent.objects.filter(event_type='EVERESTX_STATUS').count(), 1)
        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.status, 'picked_up')


# ============================================================
# TRACKING APIS
# ============================================================

class TrackingApiTests(BaseWebhookTestCase):

    def test_return_detail_shows_pickup_sla_and_events(self):
        self._set_return(status=ReturnStatus.OUT_FOR_DELIVERY)
        self._post_event('DELIVERED', T2)

        response = self.client.get(f'{self.base_url}/{self.return_request.id}/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], 'delivered_to_seller')
        self.assertEqual(response.data['pickup']['partner_status'], 'DELIVERED')
        self.assertEqual(response.data['pickup']['active_booking_id'], self.shipment.id)
        self.assertIsNotNone(response.data['sla']['inspect_due_at'])
        self.assertEqual(len(response.data['events']), 1)

    def test_shipment_detail_lists_partner_events(self):
        self._post_event('PICKED_UP', T1)
        self._post_event('MYSTERY', T2)

        response = self.client.get(f'{self.base_url}/shipments/{self.shipment.id}/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            [e['partner_status'] for e in response.data['events']],
            ['PICKED_UP', 'MYSTERY'],
        )

    def test_missing_records_are_404(self):
        self.assertEqual(self.client.get(f'{self.base_url}/9999/').status_code, 404)
        self.assertEqual(self.client.get(f'{self.base_url}/shipments/9999/').status_code, 404)


# ============================================================
# INSPECTION SLA ESCALATION
# ============================================================

@override_settings(RETURNS_WEBHOOK=webhook_settings())
class SlaEscalationTests(TestCase):

    def _create_return(self, **fields):
        defaults = {
            'order_number': 'OD-SLA-001',
            'customer_id': 2002,
            'status': ReturnStatus.DELIVERED_TO_SELLER,
            'sla_inspect_due_at': timezone.now() - timedelta(hours=1),
        }
        defaults.update(fields)
        return ReturnRequest.objects.create(**defaults)

    def test_overdue_return_is_escalated(self):
        ret = self._create_return()

        self.assertEqual(escalate_overdue_inspections(), {'escalated': 1})

        ret.refresh_from_db()
        self.assertEqual(ret.sla_escalation_level, 1)
        self.assertIsNotNone(ret.sla_last_escalated_at)
        event = ReturnEvent.objects.get(return_request=ret)
        self.assertEqual(event.event_type, 'SLA_ESCALATED')
        self.assertEqual(event.actor_id, 'sla_job')
        self.assertEqual(event.meta['to'], 1)

    def test_cooldown_prevents_back_to_back_escalation(self):
        self._create_return()
        escalate_overdue_inspections()
        self.assertEqual(escalate_overdue_inspections(), {'escalated': 0})

    def test_level_is_capped(self):
        ret = self._create_return(
            sla_escalation_level=3,
            sla_last_escalated_at=timezone.now() - timedelta(hours=21),
        )
        self.assertEqual(escalate_overdue_inspections(), {'escalated': 0})
        ret.refresh_from_db()
        self.assertEqual(ret.sla_escalation_level, 3)

    def test_not_yet_due_or_already_inspected_is_skipped(self):
        self._create_return(sla_inspect_due_at=timezone.now() + timedelta(hours=5))
        self._create_return(status=ReturnStatus.INSPECTION_APPROVED)

        self.assertEqual(escalate_overdue_inspections(), {'escalated': 0})
