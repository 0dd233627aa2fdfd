"""
Client for the upstream OpenMRS REST API.

Every read and write the allocation core performs against locations,
beds, visits and the external eligibility list goes through
:class:`OpenMRSClient`.  Network failures and HTTP error statuses are
translated into the error taxonomy of :mod:`beds.exceptions`; nothing
is retried here, retries are always initiated by the caller.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests
from django.conf import settings

from beds.exceptions import (
    Conflict,
    TransientError,
    UpstreamError,
    UpstreamValidationError,
)

logger = logging.getLogger(__name__)

REST_BASE = '/ws/rest/v1'

VISIT_REPRESENTATION = (
    "custom:(uuid,patient:(uuid,identifiers:(identifier,uuid,identifierType:(name,uuid)),"
    "person:(age,display,gender,uuid,attributes:(value,attributeType:(uuid,display)))),"
    "visitType:(uuid,name,display),location:(uuid,name,display),startDatetime,stopDatetime,"
    "encounters:(uuid,encounterDatetime,encounterType:(uuid,display)))"
)
LOCATION_TAG_REPRESENTATION = "custom:(uuid,display,name,description)"


def extract_error_message(payload: Any) -> tuple[str, Dict[str, List[str]]]:
    """Flatten an OpenMRS error body into a message and field errors.

    OpenMRS answers failed writes with
    ``{"error": {"message": ..., "fieldErrors": {...}, "globalErrors": [...]}}``.
    Field and global error messages are appended to the top-level
    message so that the user sees everything the server complained about.
    """
    if not isinstance(payload, dict):
        return (str(payload) if payload else ''), {}
    error = payload.get('error') if isinstance(payload.get('error'), dict) else payload
    message = str(error.get('message') or '').strip()
    field_errors: Dict[str, List[str]] = {}
    for field, errors in (error.get('fieldErrors') or {}).items():
        messages = [e.get('message', '') if isinstance(e, dict) else str(e) for e in errors or []]
        field_errors[field] = [m for m in messages if m]
    globals_ = [
        e.get('message', '') if isinstance(e, dict) else str(e)
        for e in error.get('globalErrors') or []
    ]
    details = [f"{f}: {m}" for f, msgs in field_errors.items() for m in msgs]
    details.extend(m for m in globals_ if m)
    if details:
        message = '; '.join([message] + details) if message else '; '.join(details)
    return message, field_errors


class OpenMRSClient:
    """Thin wrapper around ``requests`` for the endpoints the core needs."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or settings.OPENMRS_BASE_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else settings.OPENMRS_TIMEOUT
        self.session = session or requests.Session()
        user = username if username is not None else settings.OPENMRS_USERNAME
        pwd = password if password is not None else settings.OPENMRS_PASSWORD
        if user:
            self.session.auth = (user, pwd)
        self.session.headers.setdefault('Accept', 'application/json')

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------
    def url(self, path: str) -> str:
        if path.startswith('http://') or path.startswith('https://'):
            return path
        if not path.startswith('/'):
            path = '/' + path
        if path.startswith('/rest/'):
            path = '/ws' + path
        elif not path.startswith('/ws/'):
            path = REST_BASE + path
        return self.base_url + path

    def request(self, method: str, path: str, *, params=None, json=None) -> requests.Response:
        url = self.url(path)
        try:
            r = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning("%s %s failed: %s", method, url, e)
            raise TransientError(f"{method} {path} failed: {e}") from e
        if r.status_code >= 400:
            self._raise_for_status(method, url, r)
        return r

    def _raise_for_status(self, method: str, url: str, r: requests.Response) -> None:
        try:
            payload = r.json()
        except ValueError:
            payload = r.text
        message, field_errors = extract_error_message(payload)
        message = message or f"{method} {url} returned {r.status_code}"
        logger.info("%s %s -> %s: %s", method, url, r.status_code, message)
        if r.status_code == 409:
            raise Conflict(message)
        if r.status_code in (400, 422):
            raise UpstreamValidationError(message, field_errors=field_errors)
        if r.status_code in (502, 503, 504):
            raise TransientError(message)
        raise UpstreamError(message)

    def get_json(self, path: str, params=None) -> Any:
        r = self.request('GET', path, params=params)
        try:
            return r.json()
        except ValueError as e:
            raise UpstreamError(f"GET {path} returned a non-JSON body") from e

    def get_object(self, path: str, params=None) -> dict:
        data = self.get_json(path, params=params)
        if not isinstance(data, dict):
            raise UpstreamError(f"GET {path} returned {type(data).__name__}, expected an object")
        return data

    def get_results(self, path: str, params=None) -> List[dict]:
        results = self.get_object(path, params=params).get('results') or []
        if not isinstance(results, list):
            raise UpstreamError(f"GET {path} returned malformed results")
        return [r for r in results if isinstance(r, dict)]

    # ------------------------------------------------------------------
    # locations
    # ------------------------------------------------------------------
    def locations_by_tag(self, tag_uuid: str) -> List[dict]:
        return self.get_results('/location', params={'tag': tag_uuid, 'v': 'full'})

    def location_tags(self) -> List[dict]:
        return self.get_results('/locationtag', params={'v': LOCATION_TAG_REPRESENTATION})

    def save_location(self, payload: dict) -> dict:
        r = self.request('POST', '/location', json=payload)
        return r.json() if r.content else {}

    # ------------------------------------------------------------------
    # beds / compartments
    # ------------------------------------------------------------------
    def beds_by_location(self, location_uuid: str) -> List[dict]:
        return self.get_results('/bed', params={'locationUuid': location_uuid, 'v': 'full'})

    def get_bed(self, bed_uuid: str) -> dict:
        return self.get_object(f'/bed/{bed_uuid}', params={'v': 'full'})

    def bed_types(self) -> List[dict]:
        return self.get_results('/bedtype')

    def save_bed(self, payload: dict, bed_uuid: Optional[str] = None) -> requests.Response:
        path = f'/bed/{bed_uuid}' if bed_uuid else '/bed'
        return self.request('POST', path, json=payload)

    def assign_bed(self, bed_id: int, patient_uuid: str, encounter_uuid: str) -> dict:
        r = self.request(
            'POST', f'/beds/{bed_id}',
            json={'patientUuid': patient_uuid, 'encounterUuid': encounter_uuid},
        )
        return r.json() if r.content else {}

    def unassign_bed(self, bed_id: int, patient_uuid: str) -> None:
        self.request('DELETE', f'/beds/{bed_id}', params={'patientUuid': patient_uuid})

    # ------------------------------------------------------------------
    # eligibility sources
    # ------------------------------------------------------------------
    def visits_page(self, visit_type_uuid: str, start_index: int = 0, limit: int = 50) -> dict:
        params = {
            'v': VISIT_REPRESENTATION,
            'includeInactive': 'false',
            'visitType': visit_type_uuid,
            'totalCount': 'true',
            'limit': limit,
        }
        if start_index:
            params['startIndex'] = start_index
        return self.get_object('/visit', params=params)

    def eligible_admissions(self, url: str) -> Any:
        return self.get_json(url)


def get_client() -> OpenMRSClient:
    """Return the client used by the services; tests replace this."""
    return OpenMRSClient()
