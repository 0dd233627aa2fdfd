"""
Canonical records and the decoders that build them from upstream payloads.

Both eligibility sources (the active visit feed and the external
admission list) resolve into one :class:`Candidate` record at this
boundary.  The two decoders share the output shape, not the parsing
logic.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from django.utils import timezone
from django.utils.dateparse import parse_datetime

SENTINEL = '—'

AVAILABLE = 'AVAILABLE'
OCCUPIED = 'OCCUPIED'
RESOURCE_STATUSES = (AVAILABLE, OCCUPIED)

SOURCE_VISIT = 'visit'
SOURCE_EXTERNAL = 'external'


class StartTimeDecodeError(ValueError):
    """Raised when an external start-time tuple cannot be decoded."""


@dataclass(frozen=True)
class Location:
    uuid: str
    display_name: str
    tags: frozenset = frozenset()


@dataclass(frozen=True)
class Resource:
    id: int
    uuid: str
    number: str
    row: Optional[int]
    column: Optional[int]
    description: str
    status: str
    bed_type: str
    location: Location

    @property
    def is_occupied(self) -> bool:
        return self.status == OCCUPIED

    def with_status(self, status: str) -> 'Resource':
        return replace(self, status=status)


@dataclass(frozen=True)
class Candidate:
    subject_id: str
    display_name: str
    identifier: str
    age: Optional[int]
    gender: str
    visit_type: str
    visit_start_time: Optional[datetime]
    source_encounter_id: str = ''
    visit_id: str = ''
    location_id: str = ''
    source: str = SOURCE_VISIT
    extra: Dict[str, str] = field(default_factory=dict)

    @property
    def has_encounter(self) -> bool:
        return bool(self.source_encounter_id)


# ---------------------------------------------------------------------------
# locations & resources
# ---------------------------------------------------------------------------

def location_from_payload(payload: dict) -> Location:
    tags = frozenset(
        t.get('uuid') for t in (payload.get('tags') or []) if isinstance(t, dict) and t.get('uuid')
    )
    return Location(
        uuid=payload.get('uuid', ''),
        display_name=payload.get('display') or payload.get('name') or '',
        tags=tags,
    )


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def resource_from_payload(payload: dict, location: Location) -> Resource:
    """Map a bed record to a :class:`Resource` owned by ``location``.

    The owning location is always the one the bed was fetched for, even
    when the record embeds its own location reference.
    """
    bed_type = payload.get('bedType') or {}
    if isinstance(bed_type, dict):
        bed_type = bed_type.get('name') or bed_type.get('displayName') or bed_type.get('display') or ''
    status = str(payload.get('status') or AVAILABLE).upper()
    if status not in RESOURCE_STATUSES:
        status = AVAILABLE
    return Resource(
        id=_as_int(payload.get('id')) or 0,
        uuid=payload.get('uuid', ''),
        number=str(payload.get('bedNumber') or payload.get('number') or ''),
        row=_as_int(payload.get('row')),
        column=_as_int(payload.get('column')),
        description=payload.get('description') or '',
        status=status,
        bed_type=str(bed_type or ''),
        location=location,
    )


def format_location(location: Location) -> dict:
    return {'uuid': location.uuid, 'display': location.display_name}


def format_resource(resource: Resource) -> dict:
    return {
        'id': resource.id,
        'uuid': resource.uuid,
        'bedNumber': resource.number,
        'row': resource.row,
        'column': resource.column,
        'description': resource.description,
        'status': resource.status,
        'bedType': resource.bed_type,
        'location': format_location(resource.location),
    }


# ---------------------------------------------------------------------------
# candidates: active visit feed
# ---------------------------------------------------------------------------

def _pick_identifier(identifiers: Sequence[dict], identifier_name: str) -> str:
    for ident in identifiers:
        if (ident.get('identifierType') or {}).get('name') == identifier_name:
            return ident.get('identifier') or SENTINEL
    return SENTINEL


def _pick_attribute(attributes: Sequence[dict], display: str) -> str:
    for attr in attributes:
        if (attr.get('attributeType') or {}).get('display') == display:
            value = attr.get('value')
            if isinstance(value, dict):
                value = value.get('display')
            return str(value) if value not in (None, '') else SENTINEL
    return SENTINEL


def _admission_encounter(encounters: Sequence[dict], encounter_type_uuid: str) -> str:
    if not encounter_type_uuid:
        return ''
    matching = [
        e for e in encounters
        if (e.get('encounterType') or {}).get('uuid') == encounter_type_uuid and e.get('uuid')
    ]
    if not matching:
        return ''
    matching.sort(key=lambda e: e.get('encounterDatetime') or '')
    return matching[-1]['uuid']


def _parse_upstream_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # OpenMRS emits offsets without a colon, e.g. 2024-03-15T09:30:00.000+0300
    if len(value) > 5 and value[-5] in '+-' and value[-3] != ':':
        value = value[:-2] + ':' + value[-2:]
    parsed = parse_datetime(value)
    if parsed is not None and timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def candidate_from_visit(
    visit: dict,
    *,
    identifiers: Iterable[dict] = (),
    attributes: Iterable[dict] = (),
    encounter_type_uuid: str = '',
) -> Candidate:
    """Map one active visit to a :class:`Candidate`.

    ``identifiers`` is the configured list of ``{"identifierName", "key"}``
    columns.  When it is empty the first recorded identifier is used.
    Each configured identifier or attribute falls back to the sentinel
    independently; a missing identifier type is never an error.
    """
    patient = visit.get('patient') or {}
    person = patient.get('person') or {}
    recorded = patient.get('identifiers') or []
    person_attributes = person.get('attributes') or []
    identifiers = list(identifiers)

    extra: Dict[str, str] = {}
    if identifiers:
        for conf in identifiers:
            extra[conf.get('key') or conf.get('identifierName')] = _pick_identifier(
                recorded, conf.get('identifierName', '')
            )
        identifier = next(iter(extra.values()), SENTINEL)
    else:
        identifier = (recorded[0].get('identifier') if recorded else None) or SENTINEL

    for conf in attributes:
        extra[conf.get('key') or conf.get('display')] = _pick_attribute(
            person_attributes, conf.get('display', '')
        )

    return Candidate(
        subject_id=patient.get('uuid', ''),
        display_name=person.get('display') or '',
        identifier=identifier,
        age=_as_int(person.get('age')),
        gender=person.get('gender') or '',
        visit_type=(visit.get('visitType') or {}).get('display') or '',
        visit_start_time=_parse_upstream_datetime(visit.get('startDatetime')),
        source_encounter_id=_admission_encounter(visit.get('encounters') or [], encounter_type_uuid),
        visit_id=visit.get('uuid', ''),
        location_id=(visit.get('location') or {}).get('uuid') or '',
        source=SOURCE_VISIT,
        extra=extra,
    )


# ---------------------------------------------------------------------------
# candidates: external admission list
# ---------------------------------------------------------------------------

def decode_start_tuple(value: Sequence[Any], tz=None) -> datetime:
    """Decode ``[year, month, day, hour, minute]`` into an aware datetime.

    The month arrives zero-based (0 is January, 11 is December) while
    day, hour and minute are ordinary calendar values.  The components
    are interpreted in ``tz`` (the project time zone by default).

    Out-of-range components raise :class:`StartTimeDecodeError`; they
    are never rolled over into neighbouring months or years.
    """
    if not isinstance(value, (list, tuple)) or len(value) != 5:
        raise StartTimeDecodeError(f"expected a 5-element tuple, got {value!r}")
    try:
        year, month0, day, hour, minute = (int(v) for v in value)
    except (TypeError, ValueError) as e:
        raise StartTimeDecodeError(f"non-numeric start time {value!r}") from e
    if not 0 <= month0 <= 11:
        raise StartTimeDecodeError(f"month index {month0} outside 0..11 in {value!r}")
    if year < 1:
        raise StartTimeDecodeError(f"year {year} is not a positive year in {value!r}")
    try:
        naive = datetime(year, month0 + 1, day, hour, minute)
    except ValueError as e:
        raise StartTimeDecodeError(f"invalid start time {value!r}: {e}") from e
    return timezone.make_aware(naive, tz or timezone.get_default_timezone())


def candidate_from_external(record: dict, visit_start_time: Optional[datetime]) -> Candidate:
    """Map one external admission-list record to a :class:`Candidate`.

    The start time is decoded by the caller so that decoding failures
    can be reported alongside the record instead of dropping it.
    """
    extra = {
        k: str(record[k]) for k in ('locationFrom', 'locationTo') if record.get(k)
    }
    return Candidate(
        subject_id=record.get('patientUuid', ''),
        display_name=record.get('name') or '',
        identifier=record.get('idNumber') or SENTINEL,
        age=_as_int(record.get('age')),
        gender=record.get('gender') or '',
        visit_type=record.get('visitType') or '',
        visit_start_time=visit_start_time,
        source_encounter_id=record.get('admissionEncounterUuid') or '',
        visit_id=record.get('visitUuid') or '',
        location_id=record.get('locationUuid') or record.get('locationTo') or '',
        source=SOURCE_EXTERNAL,
        extra=extra,
    )


def format_candidate(candidate: Candidate) -> dict:
    data = {
        'patientUuid': candidate.subject_id,
        'name': candidate.display_name,
        'idNumber': candidate.identifier,
        'age': candidate.age,
        'gender': candidate.gender,
        'visitType': candidate.visit_type,
        'visitStartTime': candidate.visit_start_time.isoformat() if candidate.visit_start_time else None,
        'encounterUuid': candidate.source_encounter_id,
        'visitUuid': candidate.visit_id,
        'locationUuid': candidate.location_id,
        'source': candidate.source,
    }
    for key, value in candidate.extra.items():
        data.setdefault(key, value)
    return data


def dedupe_candidates(candidates: Iterable[Candidate]) -> List[Candidate]:
    seen = set()
    out = []
    for c in candidates:
        if c.subject_id in seen:
            continue
        seen.add(c.subject_id)
        out.append(c)
    return out
