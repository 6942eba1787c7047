"""
Returns Module - Database Models

TABLES:
1. ReturnRequest       → The customer's return case (status lives here)
2. ReturnEvent         → Append-only audit trail of a return (who did what)
3. ReturnShipment      → One logistics partner booking for a return pickup
4. ReturnShipmentEvent → Append-only log of every partner webhook for a booking

A ReturnShipment points at its ReturnRequest through a plain `return_id`
column, not a foreign key: the booking flow owns shipments, the return flow
owns returns, and a dangling reference is a normal outcome for the webhook.
"""

import uuid
from django.db import models

from .statuses import ReturnStatus


# ============================================================
# RETURN REQUEST MODEL
# ============================================================
# Created by the return-request flow; the partner webhook only moves
# `status`, the pickup_* bookkeeping and the SLA deadline.

class ReturnRequest(models.Model):

    return_number = models.CharField(max_length=50, unique=True, db_index=True)
    order_number = models.CharField(max_length=50, db_index=True)
    customer_id = models.IntegerField(db_index=True)

    status = models.CharField(
        max_length=40,
        choices=ReturnStatus.choices,
        default=ReturnStatus.PENDING,
    )
    status_updated_at = models.DateTimeField(null=True, blank=True)

    # Pickup bookkeeping (latest partner event for the active booking)
    pickup_last_event_at = models.DateTimeField(null=True, blank=True)
    pickup_partner = models.CharField(max_length=50, blank=True)
    pickup_partner_status = models.CharField(max_length=100, blank=True)
    pickup_active_booking_id = models.BigIntegerField(null=True, blank=True)
    pickup_latest_tracking_number = models.CharField(max_length=200, blank=True)
    pickup_latest_external_shipment_id = models.CharField(max_length=200, blank=True)

    # Seller inspection SLA (starts when the partner delivers to the seller)
    sla_inspect_due_at = models.DateTimeField(null=True, blank=True)
    sla_escalation_level = models.PositiveSmallIntegerField(default=0)
    sla_last_escalated_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'return_requests'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'sla_inspect_due_at'], name='ret_req_status_sla_idx'),
            models.Index(fields=['customer_id', 'status'], name='ret_req_cust_status_idx'),
        ]

    def __str__(self):
        return f"Return {self.return_number} ({self.status})"

    def generate_return_number(self):
        """Generate unique return number like RET-a1b2c3d4"""
        return f"RET-{uuid.uuid4().hex[:8].upper()}"

    def save(self, *args, **kwargs):
        """Auto-generate return_number on first save"""
        if not self.return_number:
            self.return_number = self.generate_return_number()
        super().save(*args, **kwargs)


# ============================================================
# RETURN EVENT MODEL
# ============================================================
# Audit trail. Rows are only ever inserted.

class ReturnEvent(models.Model):

    return_request = models.ForeignKey(
        ReturnRequest,
        on_delete=models.CASCADE,
        related_name='events'
    )
    at = models.DateTimeField()                                     # When it happened (partner time for webhooks)
    actor_role = models.CharField(max_length=20, default='system')  # 'system', 'customer', 'seller', 'admin'
    actor_id = models.CharField(max_length=100, blank=True)         # e.g. 'everestx_webhook', 'sla_job'
    event_type = models.CharField(max_length=50)                    # e.g. 'EVERESTX_STATUS', 'SLA_ESCALATED'
    meta = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'return_events'
        ordering = ['at', 'id']
        indexes = [
            models.Index(fields=['return_request', 'at'], name='ret_evt_req_at_idx'),
        ]

    def __str__(self):
        return f"{self.return_request_id}: {self.event_type} by {self.actor_role}:{self.actor_id}"


# ============================================================
# RETURN SHIPMENT MODEL
# ============================================================
# One row per partner booking. Rebooking a pickup creates a new row and
# deactivates the old one; only the active booking may drive return status.

class ReturnShipment(models.Model):

    partner = models.CharField(max_length=50, default='everestx', db_index=True)
    tracking_number = models.CharField(max_length=200, blank=True, db_index=True)
    external_shipment_id = models.CharField(max_length=200, blank=True, db_index=True)

    # Forward deliveries can share identifiers with return pickups
    return_flow = models.BooleanField(default=False)
    payload_snapshot = models.JSONField(default=dict, blank=True)  # What we sent the partner at booking time

    is_active = models.BooleanField(default=True)
    return_id = models.BigIntegerField(null=True, blank=True, db_index=True)  # Weak reference to ReturnRequest.id

    status = models.CharField(max_length=100, blank=True)  # Last raw partner status
    last_webhook_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'return_shipments'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['partner', 'tracking_number'], name='ret_shp_partner_track_idx'),
            models.Index(fields=['partner', 'external_shipment_id'], name='ret_shp_partner_ext_idx'),
        ]

    def __str__(self):
        return f"{self.partner} {self.tracking_number or self.external_shipment_id}"


# ============================================================
# RETURN SHIPMENT EVENT MODEL
# ============================================================
# Raw partner events, kept even when they do not change the return.
# The (shipment, event_id) constraint is what makes webhook replays safe.

class ReturnShipmentEvent(models.Model):

    shipment = models.ForeignKey(
        ReturnShipment,
        on_delete=models.PROTECT,
        related_name='events'
    )
    event_id = models.CharField(max_length=200)
    at = models.DateTimeField()                                   # Partner-reported event time
    partner_status = models.CharField(max_length=100, blank=True)
    mapped_return_status = models.CharField(max_length=40, null=True, blank=True)
    raw = models.JSONField(default=dict, blank=True)
    received_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'return_shipment_events'
        ordering = ['at', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['shipment', 'event_id'],
                name='uniq_return_shipment_event_id',
            ),
        ]

    def __str__(self):
        return f"{self.shipment_id}: {self.event_id} ({self.partner_status})"
