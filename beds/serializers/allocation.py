from rest_framework import serializers


class AssignSerializer(serializers.Serializer):
    patientUuid = serializers.CharField(max_length=64)
    bedId = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    tag = serializers.CharField(required=False, allow_blank=True, default='ward')


class TransferSerializer(serializers.Serializer):
    allocationId = serializers.IntegerField(required=False, min_value=1)
    patientUuid = serializers.CharField(required=False, max_length=64)
    bedId = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    tag = serializers.CharField(required=False, allow_blank=True, default='ward')

    def validate(self, attrs):
        if not attrs.get('allocationId') and not attrs.get('patientUuid'):
            raise serializers.ValidationError('allocationId or patientUuid is required')
        return attrs


class ReleaseSerializer(serializers.Serializer):
    allocationId = serializers.IntegerField(required=False, min_value=1)
    bedId = serializers.IntegerField(required=False, min_value=1)

    def validate(self, attrs):
        if not attrs.get('allocationId') and not attrs.get('bedId'):
            raise serializers.ValidationError('allocationId or bedId is required')
        return attrs


class CandidateQuerySerializer(serializers.Serializer):
    refresh = serializers.BooleanField(required=False, default=False)
