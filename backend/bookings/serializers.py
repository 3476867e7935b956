"""Serializers for booking-related API endpoints."""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from payments.models import Payment

from .confirmation import Tool
from .models import Booking, BookingEvent, BookingTopup, Topup


class ToolSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=140)
    image_url = serializers.URLField()

    def to_internal_value(self, data):
        validated = super().to_internal_value(data)
        return Tool(name=validated["name"], image_url=validated["image_url"])


class BookingSerializer(serializers.ModelSerializer):
    """
    Read-only booking representation.

    The OTP code itself is never included here; the owner reads it from the
    dedicated otp endpoint.
    """

    user = serializers.PrimaryKeyRelatedField(read_only=True)
    username = serializers.ReadOnlyField(source="user.username")
    car_name = serializers.ReadOnlyField(source="car.name")
    car_number = serializers.ReadOnlyField(source="car.number")
    coupon_code = serializers.ReadOnlyField(source="coupon.code")
    pickup_parking_name = serializers.ReadOnlyField(source="pickup_parking.name")
    dropoff_parking_name = serializers.ReadOnlyField(source="dropoff_parking.name")
    effective_end = serializers.DateTimeField(read_only=True)
    has_otp = serializers.SerializerMethodField()

    class Meta:
        model = Booking
        fields = (
            "id",
            "status",
            "confirmation_status",
            "user",
            "username",
            "car",
            "car_name",
            "car_number",
            "coupon_code",
            "start_date",
            "end_date",
            "effective_end",
            "pickup_date",
            "original_pickup_date",
            "actual_pickup_date",
            "actual_dropoff_date",
            "base_price",
            "discount_amount",
            "insurance_amount",
            "delivery_charges",
            "total_price",
            "advance_amount",
            "remaining_amount",
            "extension_price",
            "extension_till",
            "extension_time",
            "advance_payment",
            "final_payment",
            "car_condition_images",
            "tool_images",
            "tools",
            "user_confirmed",
            "user_confirmed_at",
            "resubmission_reason",
            "pic_approved",
            "pic_approved_at",
            "pic_approved_by",
            "pic_comments",
            "has_otp",
            "otp_expires_at",
            "otp_verified",
            "otp_verified_at",
            "pickup_parking",
            "pickup_parking_name",
            "dropoff_parking",
            "dropoff_parking_name",
            "reschedule_count",
            "max_reschedule_count",
            "return_condition",
            "return_images",
            "return_comments",
            "cancelled_at",
            "cancel_reason",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def get_has_otp(self, obj: Booking) -> bool:
        return bool(obj.otp_code)


class BookingCreateSerializer(serializers.Serializer):
    car = serializers.IntegerField(min_value=1)
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()
    pickup_date = serializers.DateTimeField(required=False, allow_null=True)
    coupon_code = serializers.CharField(required=False, allow_blank=True, max_length=64)
    delivery_charges = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        required=False,
        min_value=Decimal("0.00"),
        default=Decimal("0.00"),
    )

    def validate(self, attrs):
        if attrs["end_date"] <= attrs["start_date"]:
            raise serializers.ValidationError({"end_date": "End date must be after start date."})
        return attrs


class OTPVerifySerializer(serializers.Serializer):
    code = serializers.CharField(max_length=8, trim_whitespace=True)


class ConfirmationSubmitSerializer(serializers.Serializer):
    car_condition_images = serializers.ListField(
        child=serializers.URLField(),
        allow_empty=False,
    )
    tool_images = serializers.ListField(
        child=serializers.URLField(),
        required=False,
        default=list,
    )
    tools = ToolSerializer(many=True, required=False, default=list)


class ConfirmationResubmitSerializer(ConfirmationSubmitSerializer):
    resubmission_reason = serializers.CharField(required=False, allow_blank=True, default="")


class ConfirmationReviewSerializer(serializers.Serializer):
    approved = serializers.BooleanField()
    comments = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if not attrs["approved"] and not attrs["comments"].strip():
            raise serializers.ValidationError(
                {"comments": "Explain what needs to change when rejecting."}
            )
        return attrs


class ReturnSerializer(serializers.Serializer):
    return_condition = serializers.ChoiceField(
        choices=Booking.ReturnCondition.choices,
        required=False,
        default=Booking.ReturnCondition.GOOD,
    )
    return_images = serializers.ListField(
        child=serializers.URLField(),
        required=False,
        default=list,
    )
    return_comments = serializers.CharField(required=False, allow_blank=True, default="")


class RescheduleSerializer(serializers.Serializer):
    pickup_date = serializers.DateTimeField()
    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)

    def validate(self, attrs):
        if ("start_date" in attrs) != ("end_date" in attrs):
            raise serializers.ValidationError(
                "Provide both start_date and end_date to move the booking window."
            )
        return attrs


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)


class TopupSerializer(serializers.ModelSerializer):
    class Meta:
        model = Topup
        fields = ("id", "name", "description", "duration_hours", "price", "category")
        read_only_fields = fields


class TopupApplySerializer(serializers.Serializer):
    topup = serializers.IntegerField(min_value=1)
    payment_reference_id = serializers.CharField(max_length=255)
    expected_end = serializers.DateTimeField(required=False)
    method = serializers.ChoiceField(
        choices=Payment.Method.choices,
        required=False,
        default=Payment.Method.RAZORPAY,
    )


class BookingTopupSerializer(serializers.ModelSerializer):
    topup = TopupSerializer(read_only=True)

    class Meta:
        model = BookingTopup
        fields = (
            "id",
            "booking",
            "topup",
            "applied_by",
            "applied_at",
            "original_end",
            "new_end",
            "amount",
            "payment",
            "payment_reference_id",
        )
        read_only_fields = fields


class BookingEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = BookingEvent
        fields = ("id", "type", "actor", "payload", "created_at")
        read_only_fields = fields


class OverdueStatusSerializer(serializers.Serializer):
    effective_end = serializers.DateTimeField()
    is_overdue = serializers.BooleanField()
    has_topup = serializers.BooleanField()
    status = serializers.CharField()
    overdue_hours = serializers.IntegerField()
    requires_action = serializers.BooleanField()
