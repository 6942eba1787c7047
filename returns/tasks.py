"""
Returns Module - Background Tasks

Inspection SLA escalation. When the partner delivers a return to the seller,
the webhook sets `sla_inspect_due_at`. This job runs hourly (Celery beat, see
settings.CELERY_BEAT_SCHEDULE) and escalates returns the seller has not
finished inspecting by then:

    level 0 -> 1 -> 2 -> 3 (max), at most once per cooldown window

Each escalation is written to the return's audit trail so ops can see it.
"""

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .models import ReturnEvent, ReturnRequest
from .statuses import ReturnStatus

logger = logging.getLogger('returns')

AWAITING_INSPECTION = [ReturnStatus.DELIVERED_TO_SELLER, ReturnStatus.RECEIVED_BY_SELLER]


@shared_task
def escalate_overdue_inspections(limit=None):
    config = settings.RETURNS_WEBHOOK
    limit = limit or config['SLA_ESCALATION_BATCH_SIZE']
    max_level = config['SLA_ESCALATION_MAX_LEVEL']
    cooldown = timedelta(hours=config['SLA_ESCALATION_COOLDOWN_HOURS'])
    now = timezone.now()

    overdue = ReturnRequest.objects.filter(
        status__in=AWAITING_INSPECTION,
        sla_inspect_due_at__lt=now,
        sla_escalation_level__lt=max_level,
    ).order_by('sla_inspect_due_at')[:limit]

    escalated = 0
    for return_request in overdue:
        last_escalated = return_request.sla_last_escalated_at
        if last_escalated and now - last_escalated < cooldown:
            continue

        current_level = return_request.sla_escalation_level
        next_level = current_level + 1

        with transaction.atomic():
            # Another worker may have escalated it since we read it
            updated = ReturnRequest.objects.filter(
                pk=return_request.pk,
                sla_escalation_level=current_level,
                sla_last_escalated_at=last_escalated,
            ).update(
                sla_escalation_level=next_level,
                sla_last_escalated_at=now,
                updated_at=now,
            )
            if not updated:
                continue

            ReturnEvent.objects.create(
                return_request=return_request,
                at=now,
                actor_role='system',
                actor_id='sla_job',
                event_type='SLA_ESCALATED',
                meta={
                    'from': current_level,
                    'to': next_level,
                    'dueAt': return_request.sla_inspect_due_at.isoformat(),
                },
            )

        escalated += 1
        logger.warning(
            f"Inspection SLA overdue: {return_request.return_number} | "
            f"due {return_request.sla_inspect_due_at} | level {current_level} -> {next_level}"
        )

    return {'escalated': escalated}
