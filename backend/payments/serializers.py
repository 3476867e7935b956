from decimal import Decimal

from rest_framework import serializers

from .models import Payment


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = (
            "id",
            "booking",
            "type",
            "status",
            "method",
            "amount",
            "net_amount",
            "currency",
            "external_reference_id",
            "refund_amount",
            "refund_reason",
            "refunded_at",
            "completed_at",
            "created_at",
        )
        read_only_fields = fields


class PaymentConfirmationSerializer(serializers.Serializer):
    """Gateway confirmation supplied by the client after checkout."""

    payment_reference_id = serializers.CharField(max_length=255, trim_whitespace=True)
    method = serializers.ChoiceField(
        choices=Payment.Method.choices,
        required=False,
        default=Payment.Method.RAZORPAY,
    )


class RefundSerializer(serializers.Serializer):
    amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=Decimal("0.01")
    )
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    refund_reference_id = serializers.CharField(
        required=False, allow_blank=True, default="", max_length=255
    )
