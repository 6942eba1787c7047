"""
Returns Module - Partner Webhook Endpoints

Webhooks are API endpoints that EXTERNAL systems call to notify us about
events. Here the caller is the reverse-logistics partner (EverestX), telling
us where a return pickup is: booked, picked up, in transit, delivered back
to the seller.

HOW IT WORKS:
1. A pickup is booked with the partner (ReturnShipment row, returnFlow=true)
2. The partner calls POST /api/v1/returns/webhook/everestx/ on every scan
3. We log the raw event on the booking and, if it moves the return forward,
   update the return status (see reconciliation.py for the gates)

RESPONSE CONTRACT:
    401 - bad/missing X-Internal-Token (only when a secret is configured)
    400 - body is not JSON (bad syntax or content type), or has no tracking/shipment id
    500 - storage trouble; safe for the partner to retry
    200 - everything else, including events we chose to ignore.
          Partners retry on non-2xx, and a data problem on their side must
          not turn into a retry storm on ours.
"""

import logging

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.decorators import (
    api_view,
    authentication_classes,
    parser_classes,
    permission_classes,
    throttle_classes,
)
from rest_framework.exceptions import ParseError, UnsupportedMediaType
from rest_framework.parsers import JSONParser
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .authentication import is_webhook_authorized
from .normalizer import MalformedWebhookError
from .reconciliation import reconcile_webhook

logger = logging.getLogger('returns')


# ============================================================
# PARTNER RETURN SHIPMENT WEBHOOK
# ============================================================

@extend_schema(request=OpenApiTypes.OBJECT, responses=OpenApiTypes.OBJECT)
@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
@throttle_classes([])
@parser_classes([JSONParser])
def partner_return_webhook(request, partner):
    """
    POST /api/v1/returns/webhook/everestx/

    Expected payload (field names vary, see normalizer.py):
    {
        "trackingNumber": "EVX123456",
        "status": "PICKED_UP",
        "timestamp": "2026-03-01T10:15:00Z",
        "eventId": "evt_001"
    }
    """

    # --- Step 1: Authenticate before touching the body ---
    if not is_webhook_authorized(request):
        logger.warning(f"Webhook authentication failed for partner {partner}")
        return Response({'message': 'Unauthorized'}, status=status.HTTP_401_UNAUTHORIZED)

    # --- Step 2: Parse (bad JSON or a non-JSON content type -> 400) ---
    try:
        payload = request.data
    except (ParseError, UnsupportedMediaType) as exc:
        logger.warning(f"Unreadable {partner} webhook body: {exc.detail}")
        return Response({'message': str(exc.detail)}, status=status.HTTP_400_BAD_REQUEST)

    # --- Step 3: Reconcile ---
    try:
        result = reconcile_webhook(payload, partner=partner)
    except MalformedWebhookError as exc:
        logger.warning(f"Malformed {partner} webhook: {exc}")
        return Response({'message': str(exc)}, status=status.HTTP_400_BAD_REQUEST)
    except Exception:
        logger.exception(f"{partner} return webhook failed")
        return Response({'message': 'Server error'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return Response(result.as_response())
