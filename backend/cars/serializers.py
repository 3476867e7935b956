from rest_framework import serializers

from .models import Car, Parking


class ParkingSerializer(serializers.ModelSerializer):
    class Meta:
        model = Parking
        fields = ("id", "name", "locality", "city", "capacity")


class CarSerializer(serializers.ModelSerializer):
    parking = ParkingSerializer(read_only=True)
    daily_rate = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)

    class Meta:
        model = Car
        fields = (
            "id",
            "name",
            "number",
            "parking",
            "price",
            "discount_price",
            "daily_rate",
            "insurance_amount",
            "status",
        )
        read_only_fields = fields
