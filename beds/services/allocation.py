"""
Allocation engine: assigns, transfers and releases beds and compartments.

The engine works on an explicit, immutable :class:`AllocationState`::

    unassigned -> pending(selection) -> assigned -> transferred | released

Only the transition into ``assigned`` (and the terminal transfer/release
transitions) touch persistent state.  Preconditions are checked before
any I/O: a candidate without an admission encounter can never be
assigned, and nothing is submitted without a selected resource.

Every successful mutation declares the exact cache keys it invalidated
in :attr:`MutationOutcome.invalidated_keys` and broadcasts them to
connected clients.  Failed submissions leave the caller's pending state
untouched (the raised error carries it) so that the user can retry or
pick another resource; the engine itself never retries.  When the
upstream change succeeds but the local record clashes, the upstream
change is undone before the conflict is raised.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Tuple

from django.db import IntegrityError, transaction
from django.utils import timezone

from beds.exceptions import (
    AllocationError,
    Conflict,
    MissingEncounter,
    NoResourceSelected,
)
from beds.models import Allocation
from beds.services import openmrs
from beds.services.audit import log_action
from beds.services.cache import (
    broadcast_refresh,
    eligibility_keys,
    inventory_keys_for_locations,
    resolution_cache,
)
from beds.services.mapping import AVAILABLE, OCCUPIED, Candidate, Resource

logger = logging.getLogger(__name__)

UNASSIGNED = 'unassigned'
PENDING = 'pending'
ASSIGNED = 'assigned'
TRANSFERRED = 'transferred'
RELEASED = 'released'


@dataclass(frozen=True)
class AllocationState:
    phase: str = UNASSIGNED
    candidate: Optional[Candidate] = None
    resource: Optional[Resource] = None
    allocation_id: Optional[int] = None
    message: str = ''


@dataclass(frozen=True)
class MutationOutcome:
    state: AllocationState
    allocation: Allocation
    invalidated_keys: Tuple[str, ...]
    message: str


def blocking_reason(state: AllocationState) -> Optional[str]:
    """Return the code of the precondition blocking submission, if any."""
    if state.candidate is None or not state.candidate.has_encounter:
        return MissingEncounter.default_code
    if state.resource is None:
        return NoResourceSelected.default_code
    return None


def can_submit(state: AllocationState) -> bool:
    return state.phase == PENDING and blocking_reason(state) is None


def format_state(state: AllocationState) -> dict:
    return {
        'phase': state.phase,
        'patientUuid': state.candidate.subject_id if state.candidate else None,
        'bedId': state.resource.id if state.resource else None,
        'bedNumber': state.resource.number if state.resource else None,
        'bedStatus': state.resource.status if state.resource else None,
        'allocationId': state.allocation_id,
        'message': state.message,
        'blockingReason': blocking_reason(state),
    }


def format_allocation(allocation: Allocation) -> dict:
    return {
        'id': allocation.id,
        'bedId': allocation.resource_id,
        'bedUuid': allocation.resource_uuid,
        'bedNumber': allocation.resource_number,
        'patientUuid': allocation.candidate_uuid,
        'patientName': allocation.candidate_name,
        'encounterUuid': allocation.encounter_uuid,
        'locationFrom': allocation.from_location,
        'locationTo': allocation.to_location,
        'createdAt': allocation.created_at.isoformat() if allocation.created_at else None,
        'endedAt': allocation.ended_at.isoformat() if allocation.ended_at else None,
        'endReason': allocation.end_reason or None,
    }


class AllocationEngine:
    def __init__(self, client=None, user=None, cache=None):
        self.client = client or openmrs.get_client()
        self.user = user
        self.cache = cache or resolution_cache

    # ------------------------------------------------------------------
    # selection
    # ------------------------------------------------------------------
    def begin(self, candidate: Candidate) -> AllocationState:
        return AllocationState(phase=UNASSIGNED, candidate=candidate)

    def select(self, state: AllocationState, resource: Optional[Resource]) -> AllocationState:
        if state.phase not in (UNASSIGNED, PENDING):
            raise ValueError(f"cannot select a resource in phase {state.phase!r}")
        if resource is None:
            return replace(state, phase=UNASSIGNED, resource=None)
        return replace(state, phase=PENDING, resource=resource, message='')

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------
    def assign(self, state: AllocationState) -> MutationOutcome:
        candidate, resource = state.candidate, state.resource
        if state.phase not in (UNASSIGNED, PENDING):
            raise Conflict(f"Allocation is already {state.phase}.", state=state)
        if candidate is None or not candidate.has_encounter:
            self._audit_failure('bed_assign', state, MissingEncounter.default_code)
            raise MissingEncounter(state=state)
        if resource is None:
            self._audit_failure('bed_assign', state, NoResourceSelected.default_code)
            raise NoResourceSelected(state=state)

        self._check_free(state, candidate, resource)
        self._submit('bed_assign', state, self.client.assign_bed,
                     resource.id, candidate.subject_id, candidate.source_encounter_id)

        try:
            with transaction.atomic():
                allocation = Allocation.objects.create(
                    resource_id=resource.id,
                    resource_uuid=resource.uuid,
                    resource_number=resource.number,
                    candidate_uuid=candidate.subject_id,
                    candidate_name=candidate.display_name,
                    encounter_uuid=candidate.source_encounter_id,
                    from_location=candidate.location_id,
                    to_location=resource.location.uuid,
                    created_by=self._actor(),
                )
        except IntegrityError as e:
            logger.error("bed %s assigned upstream but the local record clashed: %s", resource.id, e)
            self._rollback_upstream(f"assignment of bed {resource.id}", self.client.unassign_bed,
                                    resource.id, candidate.subject_id)
            self._audit_failure('bed_assign', state, Conflict.default_code)
            raise Conflict('The bed or patient was allocated concurrently.', state=state) from e

        message = f"Bed {resource.number} was assigned to {candidate.display_name} successfully."
        keys = self._invalidate([resource.location.uuid, candidate.location_id], reason='assign')
        new_state = replace(
            state, phase=ASSIGNED, resource=resource.with_status(OCCUPIED),
            allocation_id=allocation.id, message=message,
        )
        log_action(user=self._actor(), action='bed_assign', object_type='allocation', object_id=allocation.id,
                   detail={'bedId': resource.id, 'patientUuid': candidate.subject_id})
        logger.info("assigned bed %s to patient %s (allocation %s)", resource.id, candidate.subject_id, allocation.id)
        return MutationOutcome(new_state, allocation, keys, message)

    def transfer(self, allocation: Allocation, resource: Optional[Resource]) -> MutationOutcome:
        state = self._state_for(allocation, resource)
        if not allocation.is_active:
            raise Conflict('This allocation has already ended.', state=state)
        if resource is None:
            self._audit_failure('bed_transfer', state, NoResourceSelected.default_code)
            raise NoResourceSelected(state=state)
        if resource.id == allocation.resource_id:
            raise Conflict(f"Patient already occupies bed {resource.number}.", state=state)
        self._check_resource_free(state, resource, 'bed_transfer')

        self._submit('bed_transfer', state, self.client.assign_bed,
                     resource.id, allocation.candidate_uuid, allocation.encounter_uuid)

        try:
            with transaction.atomic():
                self._end(allocation, Allocation.END_TRANSFERRED)
                moved = Allocation.objects.create(
                    resource_id=resource.id,
                    resource_uuid=resource.uuid,
                    resource_number=resource.number,
                    candidate_uuid=allocation.candidate_uuid,
                    candidate_name=allocation.candidate_name,
                    encounter_uuid=allocation.encounter_uuid,
                    from_location=allocation.to_location,
                    to_location=resource.location.uuid,
                    created_by=self._actor(),
                )
        except IntegrityError as e:
            logger.error("transfer to bed %s clashed locally: %s", resource.id, e)
            self._rollback_upstream(f"transfer to bed {resource.id}", self.client.assign_bed,
                                    allocation.resource_id, allocation.candidate_uuid, allocation.encounter_uuid)
            self._audit_failure('bed_transfer', state, Conflict.default_code)
            raise Conflict('The target bed was allocated concurrently.', state=state) from e

        message = (f"{allocation.candidate_name or allocation.candidate_uuid} was transferred "
                   f"from bed {allocation.resource_number} to bed {resource.number}.")
        keys = self._invalidate([allocation.to_location, resource.location.uuid], reason='transfer')
        new_state = replace(state, phase=TRANSFERRED, resource=resource.with_status(OCCUPIED),
                            allocation_id=moved.id, message=message)
        log_action(user=self._actor(), action='bed_transfer', object_type='allocation', object_id=moved.id,
                   detail={'fromBedId': allocation.resource_id, 'toBedId': resource.id,
                           'patientUuid': allocation.candidate_uuid})
        return MutationOutcome(new_state, moved, keys, message)

    def release(self, allocation: Allocation) -> MutationOutcome:
        state = self._state_for(allocation, None)
        if not allocation.is_active:
            raise Conflict('This allocation has already ended.', state=state)

        self._submit('bed_release', state, self.client.unassign_bed,
                     allocation.resource_id, allocation.candidate_uuid)
        with transaction.atomic():
            self._end(allocation, Allocation.END_RELEASED)

        message = f"Bed {allocation.resource_number or allocation.resource_id} is now available."
        keys = self._invalidate([allocation.to_location], reason='release')
        new_state = replace(state, phase=RELEASED, message=message)
        log_action(user=self._actor(), action='bed_release', object_type='allocation', object_id=allocation.id,
                   detail={'bedId': allocation.resource_id, 'patientUuid': allocation.candidate_uuid,
                           'status': AVAILABLE})
        return MutationOutcome(new_state, allocation, keys, message)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _actor(self):
        user = self.user
        return user if getattr(user, 'pk', None) else None

    def _state_for(self, allocation: Allocation, resource: Optional[Resource]) -> AllocationState:
        return AllocationState(phase=ASSIGNED, resource=resource, allocation_id=allocation.id)

    def _check_free(self, state: AllocationState, candidate: Candidate, resource: Resource) -> None:
        active = Allocation.objects.filter(ended_at__isnull=True)
        if active.filter(candidate_uuid=candidate.subject_id, resource_id=resource.id).exists():
            self._audit_failure('bed_assign', state, Conflict.default_code)
            raise Conflict(f"Bed {resource.number} is already assigned to {candidate.display_name}.", state=state)
        current = active.filter(candidate_uuid=candidate.subject_id).first()
        if current is not None:
            self._audit_failure('bed_assign', state, Conflict.default_code)
            raise Conflict(
                f"{candidate.display_name} already occupies bed {current.resource_number}; use transfer instead.",
                state=state,
            )
        self._check_resource_free(state, resource, 'bed_assign')

    def _check_resource_free(self, state: AllocationState, resource: Resource, action: str) -> None:
        taken = Allocation.objects.filter(ended_at__isnull=True, resource_id=resource.id).exists()
        if taken or resource.is_occupied:
            self._audit_failure(action, state, Conflict.default_code)
            raise Conflict(f"Bed {resource.number} is already occupied.", state=state)

    def _submit(self, action: str, state: AllocationState, call, *args) -> None:
        try:
            call(*args)
        except AllocationError as e:
            e.state = state
            self._audit_failure(action, state, e.default_code, str(e.detail))
            raise

    def _rollback_upstream(self, what: str, call, *args) -> None:
        """Undo an upstream change whose local record could not be written.

        If the undo fails as well the two sides disagree; that is logged for
        manual reconciliation and the caller still raises its conflict.
        """
        try:
            call(*args)
        except AllocationError as e:
            logger.error("%s could not be rolled back upstream and needs reconciliation: %s", what, e.detail)
            log_action(user=self._actor(), action='reconcile', status='failed', object_type='allocation',
                       detail={'what': what, 'message': str(e.detail)})
        else:
            logger.warning("rolled back %s upstream after a local clash", what)

    def _end(self, allocation: Allocation, reason: str) -> None:
        allocation.ended_at = timezone.now()
        allocation.ended_by = self._actor()
        allocation.end_reason = reason
        allocation.save(update_fields=['ended_at', 'ended_by', 'end_reason'])

    def _invalidate(self, location_uuids: Iterable[str], reason: str) -> Tuple[str, ...]:
        keys: List[str] = inventory_keys_for_locations(location_uuids) + eligibility_keys()
        keys = self.cache.invalidate(keys)
        broadcast_refresh(keys, reason=reason)
        return tuple(keys)

    def _audit_failure(self, action: str, state: AllocationState, code: str, message: str = '') -> None:
        log_action(
            user=self._actor(), action=action, status='failed', object_type='allocation',
            object_id=state.allocation_id,
            detail={
                'code': code,
                'message': message,
                'patientUuid': state.candidate.subject_id if state.candidate else None,
                'bedId': state.resource.id if state.resource else None,
            },
        )
