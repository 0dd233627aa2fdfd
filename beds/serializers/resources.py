import bleach
from rest_framework import serializers

from beds.services.mapping import RESOURCE_STATUSES


class BedPayloadSerializer(serializers.Serializer):
    uuid = serializers.CharField(required=False, allow_blank=True, max_length=64)
    bedNumber = serializers.CharField(min_length=5, max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, max_length=255, default='')
    row = serializers.IntegerField(min_value=1)
    column = serializers.IntegerField(min_value=1)
    status = serializers.CharField(max_length=16)
    bedType = serializers.CharField(max_length=255)
    locationUuid = serializers.CharField(max_length=64)

    def validate_bedNumber(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if len(v) < 5:
            raise serializers.ValidationError('Bed ID must be at least 5 characters')
        return v

    def validate_description(self, v):
        return bleach.clean((v or '').strip(), strip=True)

    def validate_status(self, v):
        v = (v or '').strip().upper()
        if v not in RESOURCE_STATUSES:
            raise serializers.ValidationError('Please select a valid occupancy status')
        return v

    def validate_bedType(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if not v:
            raise serializers.ValidationError('Please select a valid bed type')
        return v

    def validate_locationUuid(self, v):
        v = (v or '').strip()
        if not v:
            raise serializers.ValidationError('Please select a valid location')
        return v


class ResourceQuerySerializer(serializers.Serializer):
    tag = serializers.CharField(required=False, allow_blank=True, default='ward')
    location = serializers.CharField(required=False, allow_blank=True, default='')
    refresh = serializers.BooleanField(required=False, default=False)
