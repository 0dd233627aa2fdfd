import bleach
from rest_framework import serializers


class LocationPayloadSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    tags = serializers.ListField(child=serializers.CharField(max_length=64), required=False, allow_empty=True)

    def validate_name(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if not v:
            raise serializers.ValidationError('Location name is required')
        return v
