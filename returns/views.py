"""
Returns Module - Tracking API Views
"""

from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from .models import ReturnRequest, ReturnShipment
from .serializers import ReturnRequestSerializer, ReturnShipmentSerializer


@api_view(['GET'])
def get_return_detail(request, return_id):
    """
    GET /api/v1/returns/{id}/

    Current status, pickup tracking, inspection SLA and audit trail.
    """

    try:
        return_request = ReturnRequest.objects.prefetch_related('events').get(id=return_id)
    except ReturnRequest.DoesNotExist:
        return Response(
            {'error': 'Return request not found'},
            status=status.HTTP_404_NOT_FOUND,
        )

    return Response(ReturnRequestSerializer(return_request).data)


@api_view(['GET'])
def get_return_shipment(request, shipment_id):
    """
    GET /api/v1/returns/shipments/{id}/

    A partner booking and every webhook event received for it.
    Used by ops to answer "what did the partner actually send us?".
    """

    try:
        shipment = ReturnShipment.objects.prefetch_related('events').get(id=shipment_id)
    except ReturnShipment.DoesNotExist:
        return Response(
            {'error': 'Return shipment not found'},
            status=status.HTTP_404_NOT_FOUND,
        )

    return Response(ReturnShipmentSerializer(shipment).data)
