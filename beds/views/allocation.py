"""
Allocation endpoints: assign, transfer and release.

The views only look up the candidate, the resource and the existing
allocation; every rule about when a mutation may happen lives in
:class:`beds.services.allocation.AllocationEngine`.
"""
from __future__ import annotations

from typing import Optional

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from beds.exceptions import Conflict
from beds.models import Allocation
from beds.serializers.allocation import AssignSerializer, ReleaseSerializer, TransferSerializer
from beds.services import openmrs
from beds.services.allocation import AllocationEngine, MutationOutcome, format_allocation, format_state
from beds.services.eligibility import cached_candidates
from beds.services.inventory import cached_resources
from beds.services.mapping import Resource
from beds.services.scope import scope_for_request
from beds.views.inventory import resolve_tag


def _find_resource(request, client, role: str, bed_id: Optional[int]) -> Optional[Resource]:
    if not bed_id:
        return None
    tag = resolve_tag(role)
    scope = scope_for_request(request)
    resource = cached_resources(tag, scope, client=client).find(resource_id=bed_id)
    if resource is None:
        # the cached inventory may predate the bed; look once more against upstream
        resource = cached_resources(tag, scope, client=client, refresh=True).find(resource_id=bed_id)
    if resource is None:
        raise NotFound(f"bed {bed_id} is not available in your location scope")
    return resource


def _outcome_response(outcome: MutationOutcome, status_code=status.HTTP_200_OK) -> Response:
    return Response({
        'ok': True,
        'message': outcome.message,
        'data': {
            'allocation': format_allocation(outcome.allocation),
            'state': format_state(outcome.state),
            'invalidatedKeys': list(outcome.invalidated_keys),
        },
    }, status=status_code)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def assign(request):
    s = AssignSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    patient_uuid = s.validated_data['patientUuid']
    client = openmrs.get_client()

    candidate = cached_candidates(client=client).find(patient_uuid)
    if candidate is None:
        current = Allocation.objects.filter(candidate_uuid=patient_uuid, ended_at__isnull=True).first()
        if current is not None:
            raise Conflict(f"Patient already occupies bed {current.resource_number}; use transfer instead.")
        candidate = cached_candidates(client=client, refresh=True).find(patient_uuid)
    if candidate is None:
        raise NotFound('patient is not in the admission queue')

    engine = AllocationEngine(client=client, user=request.user)
    state = engine.begin(candidate)
    if candidate.has_encounter:
        state = engine.select(state, _find_resource(request, client, s.validated_data['tag'],
                                                    s.validated_data.get('bedId')))
    outcome = engine.assign(state)
    return _outcome_response(outcome, status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def transfer(request):
    s = TransferSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    active = Allocation.objects.filter(ended_at__isnull=True)
    if s.validated_data.get('allocationId'):
        allocation = Allocation.objects.filter(id=s.validated_data['allocationId']).first()
    else:
        allocation = active.filter(candidate_uuid=s.validated_data['patientUuid']).first()
    if allocation is None:
        raise NotFound('allocation not found')

    client = openmrs.get_client()
    resource = _find_resource(request, client, s.validated_data['tag'], s.validated_data.get('bedId'))
    outcome = AllocationEngine(client=client, user=request.user).transfer(allocation, resource)
    return _outcome_response(outcome)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def release(request):
    s = ReleaseSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    if s.validated_data.get('allocationId'):
        allocation = Allocation.objects.filter(id=s.validated_data['allocationId']).first()
    else:
        allocation = Allocation.objects.filter(resource_id=s.validated_data['bedId'], ended_at__isnull=True).first()
    if allocation is None:
        raise NotFound('allocation not found')
    outcome = AllocationEngine(user=request.user).release(allocation)
    return _outcome_response(outcome)
