from rest_framework import serializers

from .models import User


class UserBasicSerializer(serializers.ModelSerializer):
    """Public contact details shown to the other side of a matched ride."""

    class Meta:
        model = User
        fields = ["id", "username", "phone_number", "role"]
        read_only_fields = fields
