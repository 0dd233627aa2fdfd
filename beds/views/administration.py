"""
Administration endpoints for beds, compartments and mortuary locations.

Writes are limited to administrative roles; the tag and bed type lists
back the forms and are readable by any authenticated user.
"""
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from beds.permissions import IsAdminRole
from beds.serializers.locations import LocationPayloadSerializer
from beds.serializers.resources import BedPayloadSerializer
from beds.services import administration


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def save_resource(request):
    s = BedPayloadSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = dict(s.validated_data)
    result = administration.save_resource(data, uuid=data.pop('uuid', None) or None, user=request.user)
    code = status.HTTP_201_CREATED if result['created'] else status.HTTP_200_OK
    return Response({'ok': True, 'message': result['message'], 'data': result}, status=code)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def save_location(request):
    s = LocationPayloadSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = administration.save_location(
        s.validated_data['name'], tags=s.validated_data.get('tags'), user=request.user,
    )
    return Response({'ok': True, 'message': result['message'], 'data': result}, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def location_tags(request):
    return Response({'ok': True, 'data': administration.location_tags()})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def bed_types(request):
    return Response({'ok': True, 'data': administration.bed_types()})
