"""
Read endpoints for the bed management pages.

``overview`` is what the ward allocation and mortuary pages load: the
eligible queue, the resource inventory for the session's scope and the
per-location counts, in one payload.  ``resources`` and ``summary``
expose the inventory and the dashboard counts on their own.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from beds.serializers.allocation import CandidateQuerySerializer
from beds.serializers.resources import ResourceQuerySerializer
from beds.services import openmrs
from beds.services.administration import MORTUARY, tag_for_role
from beds.services.aggregation import aggregate, format_aggregate, summary as build_summary
from beds.services.eligibility import cached_candidates, format_eligibility
from beds.services.inventory import cached_resources, format_inventory
from beds.services.scope import LocationFilter, scope_for_request


def resolve_tag(value: str) -> str:
    tag = tag_for_role((value or '').strip())
    if not tag:
        raise ValidationError({'tag': [f"no location tag is configured for {value!r}"]})
    return tag


def format_scope(scope: LocationFilter) -> dict:
    return {
        'restricted': scope.restricted,
        'locationUuid': scope.selected_location,
        'requiresSelection': scope.requires_selection,
    }


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def overview(request):
    q = ResourceQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    role = q.validated_data['tag']
    tag = resolve_tag(role)
    refresh = q.validated_data['refresh']
    scope = scope_for_request(request, default_location=q.validated_data['location'] or None)
    client = openmrs.get_client()

    inventory = cached_resources(tag, scope, client=client, refresh=refresh)
    eligibility = cached_candidates(client=client, refresh=refresh)
    counts = aggregate(inventory.resources_by_location, mortuary=(role == MORTUARY), locations=inventory.locations)
    inv = format_inventory(inventory)
    return Response({
        'ok': True,
        'data': {
            'scope': format_scope(scope),
            'candidates': format_eligibility(eligibility),
            'resourcesByLocation': inv['resourcesByLocation'],
            'aggregates': [format_aggregate(c) for c in counts],
            'warnings': inv['warnings'] + [{'code': 'eligibility', 'message': w} for w in eligibility.warnings],
            'error': inventory.error or eligibility.error,
            'isLoading': inventory.is_loading or eligibility.is_loading,
        },
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def resources(request):
    q = ResourceQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    tag = resolve_tag(q.validated_data['tag'])
    scope = scope_for_request(request, default_location=q.validated_data['location'] or None)
    result = cached_resources(tag, scope, refresh=q.validated_data['refresh'])
    return Response({'ok': True, 'data': format_inventory(result), 'scope': format_scope(scope)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def summary(request):
    q = CandidateQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    scope = scope_for_request(request)
    return Response({'ok': True, 'data': build_summary(scope, refresh=q.validated_data['refresh'])})
