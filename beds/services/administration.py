"""
Create and edit beds, compartments and mortuary locations upstream.

Payloads reach this module already validated and sanitised by the
serializers in :mod:`beds.serializers`.  Each successful write drops the
inventory cache entries it affects and broadcasts a refresh.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from django.conf import settings

from beds.exceptions import AllocationError, UpstreamError
from beds.services import openmrs
from beds.services.audit import log_action
from beds.services.cache import broadcast_refresh, inventory_keys_for_locations, resolution_cache

logger = logging.getLogger(__name__)

WARD = 'ward'
MORTUARY = 'mortuary'
OTHER = 'other'


def tag_role(tag_uuid: str) -> str:
    if tag_uuid and tag_uuid == settings.ADMISSION_LOCATION_TAG_UUID:
        return WARD
    if tag_uuid and tag_uuid == settings.MORTUARY_LOCATION_TAG_UUID:
        return MORTUARY
    return OTHER


def tag_for_role(role: str) -> str:
    """Map ``ward``/``mortuary`` (or a raw tag uuid) to a location tag uuid."""
    if role == MORTUARY:
        return settings.MORTUARY_LOCATION_TAG_UUID
    if role in ('', WARD):
        return settings.ADMISSION_LOCATION_TAG_UUID
    return role


def _invalidate(location_uuids, reason: str) -> List[str]:
    keys = resolution_cache.invalidate(inventory_keys_for_locations(location_uuids))
    broadcast_refresh(keys, reason=reason)
    return keys


def _current_location(client, bed_uuid: str) -> Optional[str]:
    location = client.get_bed(bed_uuid).get('location') or {}
    return location.get('uuid') if isinstance(location, dict) else location


def save_resource(payload: Dict[str, Any], uuid: Optional[str] = None, user=None, client=None) -> dict:
    """Create a bed/compartment, or edit the one identified by ``uuid``.

    An edit first reads the bed's current location so that moving it
    drops the cached inventory of the location it leaves as well as the
    one it joins.
    """
    client = client or openmrs.get_client()
    data = {k: v for k, v in payload.items() if k != 'uuid'}
    bed_uuid = uuid or payload.get('uuid') or None
    action = 'resource_update' if bed_uuid else 'resource_create'
    previous_location = None
    try:
        if bed_uuid:
            previous_location = _current_location(client, bed_uuid)
        r = client.save_bed(data, bed_uuid)
        if r.status_code not in (200, 201):
            raise UpstreamError(f"Saving bed {data.get('bedNumber')} returned {r.status_code}")
    except AllocationError as e:
        log_action(user=user, action=action, status='failed', object_type='bed', object_id=bed_uuid,
                   detail={'code': e.default_code, 'message': str(e.detail), 'bedNumber': data.get('bedNumber')})
        raise
    saved = r.json() if r.content else {}

    keys = _invalidate([previous_location, data.get('locationUuid')], reason=action)
    log_action(user=user, action=action, object_type='bed', object_id=saved.get('uuid') or bed_uuid,
               detail={'bedNumber': data.get('bedNumber'), 'locationUuid': data.get('locationUuid')})
    verb = 'updated' if bed_uuid else 'created'
    logger.info("bed %s %s in location %s", data.get('bedNumber'), verb, data.get('locationUuid'))
    return {
        'bed': saved,
        'created': not bed_uuid,
        'message': f"Bed {data.get('bedNumber')} was {verb} successfully.",
        'invalidatedKeys': keys,
    }


def save_location(name: str, tags: Optional[List[str]] = None, user=None, client=None) -> dict:
    """Create a location.

    Without explicit ``tags`` the location is tagged with the mortuary
    tag, provided the upstream tag list actually contains it.
    """
    client = client or openmrs.get_client()
    if tags is None:
        mortuary = settings.MORTUARY_LOCATION_TAG_UUID
        known = {t.get('uuid') for t in client.location_tags()}
        tags = [mortuary] if mortuary and mortuary in known else []
    payload = {'name': name, 'tags': list(tags)}
    try:
        saved = client.save_location(payload)
    except AllocationError as e:
        log_action(user=user, action='location_create', status='failed', object_type='location',
                   detail={'code': e.default_code, 'message': str(e.detail), 'name': name})
        raise

    keys = _invalidate([saved.get('uuid')], reason='location_create')
    log_action(user=user, action='location_create', object_type='location', object_id=saved.get('uuid'),
               detail={'name': name, 'tags': payload['tags']})
    return {
        'location': saved,
        'message': f"Location {name} was created successfully.",
        'invalidatedKeys': keys,
    }


def location_tags(client=None) -> List[dict]:
    client = client or openmrs.get_client()
    return [
        {
            'uuid': t.get('uuid'),
            'display': t.get('display') or t.get('name'),
            'name': t.get('name'),
            'description': t.get('description'),
            'role': tag_role(t.get('uuid')),
        }
        for t in client.location_tags()
    ]


def bed_types(client=None) -> List[dict]:
    client = client or openmrs.get_client()
    return [
        {
            'uuid': t.get('uuid'),
            'name': t.get('name'),
            'displayName': t.get('displayName') or t.get('display') or t.get('name'),
            'description': t.get('description'),
        }
        for t in client.bed_types()
    ]
