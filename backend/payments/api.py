from __future__ import annotations

import logging

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from bookings.models import Booking
from core.exceptions import BadRequest, Forbidden

from .ledger import booking_payment_summary, refund_payment
from .models import Payment
from .serializers import PaymentSerializer, RefundSerializer

logger = logging.getLogger(__name__)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def payments_list(request):
    """Return the caller's payments, newest first; admins may pass ?booking= for any."""
    user = request.user
    qs = Payment.objects.select_related("booking")
    if not user.is_admin():
        qs = qs.filter(user=user)
    booking_param = request.query_params.get("booking")
    if booking_param:
        try:
            qs = qs.filter(booking_id=int(booking_param))
        except (TypeError, ValueError):
            raise BadRequest("booking must be a valid integer.")
    type_param = request.query_params.get("type")
    if type_param:
        qs = qs.filter(type=type_param)
    return Response(PaymentSerializer(qs.order_by("-created_at"), many=True).data)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def payments_summary(request):
    """Return paid/refunded/outstanding totals for one booking."""
    booking_param = request.query_params.get("booking")
    if not booking_param:
        raise BadRequest("booking query parameter is required.")
    try:
        booking_id = int(booking_param)
    except (TypeError, ValueError):
        raise BadRequest("booking must be a valid integer.")

    booking = get_object_or_404(Booking, pk=booking_id)
    user = request.user
    if booking.user_id != user.id and not user.is_admin():
        raise Forbidden("You can only view payments for your own bookings.")
    return Response(booking_payment_summary(booking), status=status.HTTP_200_OK)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def payment_refund(request, payment_id: int):
    """Refund part or all of a completed payment (admin-only)."""
    if not request.user.is_admin():
        raise Forbidden("Only admins can issue refunds.")
    payment = get_object_or_404(Payment, pk=payment_id)
    serializer = RefundSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    payment = refund_payment(
        payment.pk,
        amount=data["amount"],
        reason=data["reason"],
        reference_id=data["refund_reference_id"],
    )
    logger.info(
        "payments: refund issued by admin %s on payment %s",
        request.user.id,
        payment.pk,
    )
    return Response(PaymentSerializer(payment).data, status=status.HTTP_200_OK)
