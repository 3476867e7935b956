"""API viewsets and permissions for bookings."""

from __future__ import annotations

import logging

from django.shortcuts import get_object_or_404
from django.utils import timezone
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from cars.models import Car
from core.exceptions import BadRequest, Forbidden
from payments.serializers import PaymentConfirmationSerializer

from . import services
from .filters import BookingFilter
from .models import Booking, Topup
from .serializers import (
    BookingCreateSerializer,
    BookingEventSerializer,
    BookingSerializer,
    BookingTopupSerializer,
    CancelSerializer,
    ConfirmationResubmitSerializer,
    ConfirmationReviewSerializer,
    ConfirmationSubmitSerializer,
    OTPVerifySerializer,
    OverdueStatusSerializer,
    RescheduleSerializer,
    ReturnSerializer,
    TopupApplySerializer,
    TopupSerializer,
)

logger = logging.getLogger(__name__)


class IsBookingParticipant(permissions.BasePermission):
    """Allow access only to users tied to the booking."""

    def has_permission(self, request, view) -> bool:
        """Always allow; actual checks happen at object level."""
        return True

    def has_object_permission(self, request, view, obj: Booking) -> bool:
        """The customer, an admin, or staff of either parking on the booking."""
        user = request.user
        if obj.user_id == user.id or user.is_admin():
            return True
        return user.manages_parking(obj.pickup_parking_id) or user.manages_parking(
            obj.dropoff_parking_id
        )


class BookingViewSet(viewsets.ModelViewSet):
    """Bookings and their lifecycle transitions."""

    serializer_class = BookingSerializer
    permission_classes = (permissions.IsAuthenticated, IsBookingParticipant)
    filter_backends = (DjangoFilterBackend,)
    filterset_class = BookingFilter
    http_method_names = ["get", "post", "delete", "head", "options"]

    def get_queryset(self):
        """Restrict bookings to what the authenticated user may see."""
        user = self.request.user
        if not user.is_authenticated:
            return Booking.objects.none()
        return Booking.objects.with_related().visible_to(user).order_by("-created_at")

    def get_object(self):
        """Fetch a single booking and enforce participant permissions."""
        obj = get_object_or_404(Booking.objects.with_related(), pk=self.kwargs["pk"])
        self.check_object_permissions(self.request, obj)
        return obj

    def _respond(self, booking: Booking, status_code: int = status.HTTP_200_OK) -> Response:
        fresh = Booking.objects.with_related().get(pk=booking.pk)
        return Response(BookingSerializer(fresh).data, status=status_code)

    def create(self, request, *args, **kwargs):
        """Create a booking; pricing and availability are decided server-side."""
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = services.create_booking(
            user=request.user,
            car_id=data["car"],
            start=data["start_date"],
            end=data["end_date"],
            pickup_date=data.get("pickup_date"),
            coupon_code=data.get("coupon_code") or None,
            delivery_charges=data["delivery_charges"],
        )
        return self._respond(booking, status.HTTP_201_CREATED)

    def destroy(self, request, *args, **kwargs):
        """Cancel the booking; the row is kept for the audit trail."""
        booking = self.get_object()
        serializer = CancelSerializer(data=request.data or {})
        serializer.is_valid(raise_exception=True)
        booking = services.cancel_booking(
            booking.pk,
            actor=request.user,
            reason=serializer.validated_data["reason"],
        )
        return self._respond(booking)

    @action(
        detail=False,
        methods=["get"],
        url_path="availability",
        permission_classes=[permissions.AllowAny],
    )
    def availability(self, request, *args, **kwargs):
        """Return booked [start, end) ranges for a car."""
        car_param = request.query_params.get("car")
        if not car_param:
            return Response(
                {"detail": "car query parameter is required."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        try:
            car_id = int(car_param)
        except (TypeError, ValueError):
            return Response(
                {"detail": "car must be a valid integer."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        car = get_object_or_404(Car.objects.filter(is_active=True), pk=car_id)
        ranges = (
            Booking.objects.filter(car=car, end_date__gt=timezone.now())
            .not_cancelled()
            .order_by("start_date")
            .values("start_date", "end_date")
        )
        return Response(
            [
                {"start_date": row["start_date"], "end_date": row["end_date"]}
                for row in ranges
            ],
            status=status.HTTP_200_OK,
        )

    @action(detail=False, methods=["get"], url_path="timeline")
    def timeline(self, request, *args, **kwargs):
        """Overdue status of every active rental the caller oversees."""
        user = request.user
        if user.is_admin():
            queryset = Booking.objects.with_related()
        elif user.is_parking_staff() and user.parking_id:
            queryset = Booking.objects.with_related().at_parking(user.parking_id)
        else:
            raise Forbidden("Only admins and parking staff can view the timeline.")
        now = timezone.now()
        rows = [
            {
                "booking": BookingSerializer(booking).data,
                "overdue": OverdueStatusSerializer(result).data,
            }
            for booking, result in services.overdue_timeline(queryset, now=now)
        ]
        return Response({"now": now, "results": rows}, status=status.HTTP_200_OK)

    @action(detail=True, methods=["get"], url_path="events")
    def events(self, request, *args, **kwargs):
        booking = self.get_object()
        serializer = BookingEventSerializer(booking.events.all(), many=True)
        return Response(serializer.data)

    @action(detail=True, methods=["post"], url_path="advance-payment")
    def advance_payment(self, request, *args, **kwargs):
        """Record the advance the customer paid at the gateway."""
        booking = self.get_object()
        serializer = PaymentConfirmationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = services.confirm_advance_payment(
            booking.pk,
            actor=request.user,
            reference_id=serializer.validated_data["payment_reference_id"],
            method=serializer.validated_data["method"],
        )
        return self._respond(booking)

    @action(detail=True, methods=["post"], url_path="final-payment")
    def final_payment(self, request, *args, **kwargs):
        """Record the remaining balance once the condition report is approved."""
        booking = self.get_object()
        serializer = PaymentConfirmationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = services.confirm_final_payment(
            booking.pk,
            actor=request.user,
            reference_id=serializer.validated_data["payment_reference_id"],
            method=serializer.validated_data["method"],
        )
        return self._respond(booking)

    @action(detail=True, methods=["get"], url_path="otp")
    def otp(self, request, *args, **kwargs):
        """Show the customer their pickup code."""
        booking = self.get_object()
        return Response(services.get_otp(booking, actor=request.user))

    @action(detail=True, methods=["post"], url_path="otp/verify")
    def verify_otp(self, request, *args, **kwargs):
        booking = self.get_object()
        serializer = OTPVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = services.verify_otp(
            booking.pk,
            actor=request.user,
            code=serializer.validated_data["code"],
        )
        return self._respond(booking)

    @action(detail=True, methods=["post"], url_path="otp/resend")
    def resend_otp(self, request, *args, **kwargs):
        booking = self.get_object()
        booking = services.resend_otp(booking.pk, actor=request.user)
        return self._respond(booking)

    @action(detail=True, methods=["post"], url_path="confirmation")
    def confirmation(self, request, *args, **kwargs):
        """Customer submits photos of the car and its tools before pickup."""
        booking = self.get_object()
        serializer = ConfirmationSubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = services.submit_confirmation(
            booking.pk,
            actor=request.user,
            images=data["car_condition_images"],
            tool_images=data["tool_images"],
            tools=data["tools"],
        )
        return self._respond(booking)

    @action(detail=True, methods=["post"], url_path="confirmation/review")
    def review_confirmation(self, request, *args, **kwargs):
        """Parking staff approve or reject the submitted condition report."""
        booking = self.get_object()
        serializer = ConfirmationReviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = services.review_confirmation(
            booking.pk,
            actor=request.user,
            approved=serializer.validated_data["approved"],
            comments=serializer.validated_data["comments"],
        )
        return self._respond(booking)

    @action(detail=True, methods=["post"], url_path="confirmation/resubmit")
    def resubmit_confirmation(self, request, *args, **kwargs):
        booking = self.get_object()
        serializer = ConfirmationResubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = services.resubmit_confirmation(
            booking.pk,
            actor=request.user,
            images=data["car_condition_images"],
            tool_images=data["tool_images"],
            tools=data["tools"],
            reason=data["resubmission_reason"],
        )
        return self._respond(booking)

    @action(detail=True, methods=["post"], url_path="confirm-pickup")
    def confirm_pickup(self, request, *args, **kwargs):
        booking = self.get_object()
        booking = services.confirm_pickup(booking.pk, actor=request.user)
        return self._respond(booking)

    @action(detail=True, methods=["post"], url_path="confirm-return")
    def confirm_return(self, request, *args, **kwargs):
        booking = self.get_object()
        serializer = ReturnSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = services.confirm_return(
            booking.pk,
            actor=request.user,
            condition=data["return_condition"],
            images=data["return_images"],
            comments=data["return_comments"],
        )
        return self._respond(booking)

    @action(detail=True, methods=["post"], url_path="reschedule")
    def reschedule(self, request, *args, **kwargs):
        booking = self.get_object()
        serializer = RescheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = services.reschedule_booking(
            booking.pk,
            actor=request.user,
            pickup_date=data["pickup_date"],
            start=data.get("start_date"),
            end=data.get("end_date"),
        )
        return self._respond(booking)

    @action(detail=True, methods=["get", "post"], url_path="topups")
    def topups(self, request, *args, **kwargs):
        """List extensions applied to the booking, or buy a new one."""
        booking = self.get_object()
        if request.method == "GET":
            applied = booking.topups.select_related("topup").all()
            return Response(BookingTopupSerializer(applied, many=True).data)

        serializer = TopupApplySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        reference = data["payment_reference_id"].strip()
        if not reference:
            raise BadRequest("A payment reference is required.")
        applied = services.apply_topup(
            booking.pk,
            actor=request.user,
            topup_id=data["topup"],
            reference_id=reference,
            expected_end=data.get("expected_end"),
            method=data["method"],
        )
        fresh = Booking.objects.with_related().get(pk=booking.pk)
        return Response(
            {
                "topup": BookingTopupSerializer(applied).data,
                "booking": BookingSerializer(fresh).data,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["get"], url_path="overdue")
    def overdue(self, request, *args, **kwargs):
        booking = self.get_object()
        result = services.get_overdue_status(booking)
        return Response(OverdueStatusSerializer(result).data)


class TopupViewSet(viewsets.ReadOnlyModelViewSet):
    """Catalogue of extensions customers can buy."""

    serializer_class = TopupSerializer
    permission_classes = (permissions.IsAuthenticated,)
    queryset = Topup.objects.active()
