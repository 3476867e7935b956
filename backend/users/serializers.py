from django.contrib.auth import get_user_model
from rest_framework import serializers

User = get_user_model()


class ProfileSerializer(serializers.ModelSerializer):
    """Profile details for the authenticated user."""

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "phone",
            "first_name",
            "last_name",
            "role",
            "is_verified",
            "parking",
            "date_joined",
        ]
        read_only_fields = (
            "id",
            "username",
            "role",
            "is_verified",
            "parking",
            "date_joined",
        )

    def validate_phone(self, value):
        if value in (None, ""):
            return None
        qs = User.objects.all()
        if self.instance:
            qs = qs.exclude(pk=self.instance.pk)
        if qs.filter(phone=value).exists():
            raise serializers.ValidationError("A user with this phone already exists.")
        return value
