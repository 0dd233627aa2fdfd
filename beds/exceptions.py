"""
Error taxonomy for the allocation core and the unified API exception handler.

Write paths raise the ``APIException`` subclasses below so that DRF
turns them into responses carrying a stable, discriminated ``code``.
Read paths never raise them past the component boundary; they record
the failure on the result instead (see ``InventoryResult.error`` and
``EligibilityResult.error``).
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler


class AllocationError(APIException):
    """Base class for bed management failures.

    ``state`` optionally carries the allocation state the caller was in
    when the failure happened, so the caller can stay in ``pending`` and
    retry or pick another resource.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Bed management operation failed.'
    default_code = 'allocation_error'

    def __init__(self, detail=None, code=None, *, state=None, field_errors=None):
        super().__init__(detail, code)
        self.state = state
        self.field_errors = field_errors or {}


class TransientError(AllocationError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'The upstream service is temporarily unavailable.'
    default_code = 'transient'


class UpstreamValidationError(AllocationError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The submitted data was rejected.'
    default_code = 'validation'


class UpstreamError(AllocationError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'The upstream service returned an unexpected response.'
    default_code = 'upstream_error'


class PreconditionFailed(AllocationError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'precondition'


class MissingEncounter(PreconditionFailed):
    default_detail = 'This operation requires an admission encounter filled first'
    default_code = 'missing_encounter'


class NoResourceSelected(PreconditionFailed):
    default_detail = 'Select a bed or compartment before saving.'
    default_code = 'no_resource_selected'


class Conflict(AllocationError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The resource is already allocated.'
    default_code = 'conflict'


def _error_code(exc) -> str:
    if isinstance(exc, AllocationError):
        return exc.default_code
    if isinstance(exc, ValidationError):
        return 'validation'
    code = getattr(exc, 'default_code', None)
    return code or 'api_error'


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': str(exc)}}, status=500)
    detail = None
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = str(resp.data)
    error = {'code': _error_code(exc), 'message': detail}
    if isinstance(exc, AllocationError):
        if exc.field_errors:
            error['fieldErrors'] = exc.field_errors
        if exc.state is not None:
            from beds.services.allocation import format_state
            error['state'] = format_state(exc.state)
    return Response({'ok': False, 'error': error}, status=resp.status_code)
