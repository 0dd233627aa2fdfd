"""
Eligibility resolution: the queue of patients or decedents awaiting a bed.

Two sourcing strategies exist and exactly one is used per deployment:

``visits``
    pages through the active visit feed filtered by the inpatient visit
    type, following the ``next`` link until a page has none.
``external``
    reads a configured endpoint returning a flat admission list whose
    start times arrive as ``[year, month0, day, hour, minute]`` tuples.

Both produce an :class:`EligibilityResult` of the same shape.  Candidates
already holding an active allocation are left out of the queue.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from django.conf import settings

from beds.exceptions import AllocationError
from beds.models import Allocation
from beds.services import openmrs
from beds.services.cache import eligibility_key, mark_loading, resolution_cache
from beds.services.mapping import (
    Candidate,
    StartTimeDecodeError,
    candidate_from_external,
    candidate_from_visit,
    decode_start_tuple,
    dedupe_candidates,
    format_candidate,
)

logger = logging.getLogger(__name__)

VISITS = 'visits'
EXTERNAL = 'external'
STRATEGIES = (VISITS, EXTERNAL)


@dataclass(frozen=True)
class EligibilityResult:
    strategy: str
    candidates: List[Candidate] = field(default_factory=list)
    is_loading: bool = False
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    total_count: Optional[int] = None

    def find(self, subject_id: str) -> Optional[Candidate]:
        for c in self.candidates:
            if c.subject_id == subject_id:
                return c
        return None


def format_eligibility(result: EligibilityResult) -> dict:
    return {
        'strategy': result.strategy,
        'candidates': [format_candidate(c) for c in result.candidates],
        'isLoading': result.is_loading,
        'error': result.error,
        'warnings': list(result.warnings),
        'totalCount': result.total_count,
    }


def configured_strategy() -> str:
    strategy = (settings.ELIGIBILITY_STRATEGY or '').strip().lower()
    if strategy:
        if strategy not in STRATEGIES:
            raise ValueError(f"unknown ELIGIBILITY_STRATEGY {strategy!r}")
        return strategy
    return EXTERNAL if settings.PATIENT_LIST_FOR_ADMISSION_URL else VISITS


def endpoint_for(strategy: str) -> str:
    if strategy == EXTERNAL:
        return settings.PATIENT_LIST_FOR_ADMISSION_URL
    return f"visit?visitType={settings.INPATIENT_VISIT_UUID}"


# ---------------------------------------------------------------------------
# visit feed
# ---------------------------------------------------------------------------

def _has_next(page: dict) -> bool:
    return any(isinstance(link, dict) and link.get('rel') == 'next' for link in page.get('links') or [])


def fetch_visit_pages(client, visit_type_uuid: str, page_size: int) -> Dict[int, dict]:
    """Fetch visit pages until one lacks a ``next`` link.

    Pages are keyed by index so that consumers reassemble them in page
    order regardless of how they were obtained.
    """
    pages: Dict[int, dict] = {}
    index = 0
    while True:
        page = client.visits_page(visit_type_uuid, start_index=index * page_size, limit=page_size)
        pages[index] = page
        if not _has_next(page):
            return pages
        index += 1


def _resolve_visits(client) -> EligibilityResult:
    pages = fetch_visit_pages(client, settings.INPATIENT_VISIT_UUID, settings.VISIT_PAGE_SIZE)
    candidates = []
    for index in sorted(pages):
        for visit in pages[index].get('results') or []:
            if not isinstance(visit, dict):
                continue
            candidates.append(candidate_from_visit(
                visit,
                identifiers=settings.ACTIVE_VISIT_IDENTIFIERS,
                attributes=settings.ACTIVE_VISIT_ATTRIBUTES,
                encounter_type_uuid=settings.ADMISSION_ENCOUNTER_TYPE_UUID,
            ))
    total = pages[0].get('totalCount') if pages else None
    return EligibilityResult(strategy=VISITS, candidates=candidates, total_count=total)


# ---------------------------------------------------------------------------
# external admission list
# ---------------------------------------------------------------------------

def _external_records(payload) -> list:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ('data', 'results'):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


def _resolve_external(client) -> EligibilityResult:
    url = settings.PATIENT_LIST_FOR_ADMISSION_URL
    if not url:
        return EligibilityResult(strategy=EXTERNAL, error='PATIENT_LIST_FOR_ADMISSION_URL is not configured')
    records = _external_records(client.eligible_admissions(url))
    candidates = []
    warnings = []
    for record in records:
        if not isinstance(record, dict):
            logger.warning("admission list returned a malformed record: %r", record)
            warnings.append(f"malformed admission record: {record!r}")
            continue
        try:
            start = decode_start_tuple(record.get('visitStartTime'))
        except StartTimeDecodeError as e:
            logger.warning("admission list record %s has an invalid start time: %s",
                           record.get('patientUuid'), e)
            warnings.append(f"{record.get('patientUuid', '?')}: {e}")
            start = None
        candidates.append(candidate_from_external(record, start))
    return EligibilityResult(strategy=EXTERNAL, candidates=candidates, warnings=warnings,
                             total_count=len(records))


# ---------------------------------------------------------------------------
# resolution
# ---------------------------------------------------------------------------

def _allocated_subjects() -> set:
    return set(
        Allocation.objects.filter(ended_at__isnull=True).values_list('candidate_uuid', flat=True)
    )


def resolve_candidates(strategy: Optional[str] = None, client=None) -> EligibilityResult:
    """Resolve the eligible queue with ``strategy`` and cache the result.

    Transient and upstream failures are absorbed into ``error``.
    """
    strategy = strategy or configured_strategy()
    client = client or openmrs.get_client()
    key = eligibility_key(strategy, endpoint_for(strategy))
    ticket = resolution_cache.begin(key)
    try:
        if strategy == EXTERNAL:
            result = _resolve_external(client)
        else:
            result = _resolve_visits(client)
    except AllocationError as e:
        logger.warning("eligibility resolution (%s) failed: %s", strategy, e.detail)
        result = EligibilityResult(strategy=strategy, error=str(e.detail))
        resolution_cache.commit(key, ticket, result)
        return result

    allocated = _allocated_subjects()
    queue = [c for c in dedupe_candidates(result.candidates) if c.subject_id not in allocated]
    result = EligibilityResult(
        strategy=result.strategy,
        candidates=queue,
        error=result.error,
        warnings=result.warnings,
        total_count=result.total_count,
    )
    resolution_cache.commit(key, ticket, result)
    return result


def cached_candidates(strategy: Optional[str] = None, client=None, refresh: bool = False) -> EligibilityResult:
    strategy = strategy or configured_strategy()
    key = eligibility_key(strategy, endpoint_for(strategy))
    if not refresh:
        value, is_loading = resolution_cache.peek(key)
        if value is not None:
            return mark_loading(value, is_loading)
    return resolve_candidates(strategy, client=client)
