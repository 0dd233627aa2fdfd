"""
Resource inventory: beds and compartments grouped by location.

``load_resources`` resolves the locations carrying a tag, fans out one
bed fetch per location on the event loop and merges the answers back in
location order.  Locations without resources are dropped.  A failing
location only costs that location's contribution for this cycle and is
reported as a warning; the load as a whole fails only when every fetch
fails.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from asgiref.sync import async_to_sync, sync_to_async

from beds.exceptions import AllocationError
from beds.models import Allocation
from beds.services import openmrs
from beds.services.cache import inventory_key, mark_loading, resolution_cache
from beds.services.mapping import (
    OCCUPIED,
    Location,
    Resource,
    format_location,
    format_resource,
    location_from_payload,
    resource_from_payload,
)
from beds.services.scope import UNRESTRICTED, LocationFilter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceWarning:
    location_uuid: str
    location_name: str
    message: str
    code: str = 'partial_source_failure'


@dataclass(frozen=True)
class InventoryResult:
    location_tag: str
    resources_by_location: Dict[str, List[Resource]] = field(default_factory=dict)
    locations: Dict[str, Location] = field(default_factory=dict)
    warnings: List[SourceWarning] = field(default_factory=list)
    error: Optional[str] = None
    is_loading: bool = False

    def all_resources(self) -> List[Resource]:
        return [r for resources in self.resources_by_location.values() for r in resources]

    def find(self, resource_id: Optional[int] = None, uuid: Optional[str] = None) -> Optional[Resource]:
        for r in self.all_resources():
            if (resource_id is not None and r.id == resource_id) or (uuid and r.uuid == uuid):
                return r
        return None


def format_inventory(result: InventoryResult) -> dict:
    return {
        'locationTag': result.location_tag,
        'resourcesByLocation': [
            {
                'location': format_location(result.locations[loc_uuid]),
                'resources': [format_resource(r) for r in resources],
            }
            for loc_uuid, resources in result.resources_by_location.items()
        ],
        'warnings': [
            {'code': w.code, 'locationUuid': w.location_uuid, 'locationName': w.location_name, 'message': w.message}
            for w in result.warnings
        ],
        'error': result.error,
        'isLoading': result.is_loading,
    }


def _occupied_resource_ids() -> set:
    return set(
        Allocation.objects.filter(ended_at__isnull=True).values_list('resource_id', flat=True)
    )


async def _fetch_location(client, location: Location):
    try:
        payloads = await sync_to_async(client.beds_by_location, thread_sensitive=False)(location.uuid)
    except (AllocationError, ValueError) as e:
        logger.warning("bed fetch for location %s (%s) failed: %s", location.uuid, location.display_name, e)
        return location, None, str(getattr(e, 'detail', e))
    return location, payloads, None


async def _fetch_all(client, locations: List[Location]):
    return await asyncio.gather(*(_fetch_location(client, loc) for loc in locations))


def resolve_locations(client, location_tag: str, scope: LocationFilter) -> List[Location]:
    locations = [location_from_payload(p) for p in client.locations_by_tag(location_tag)]
    return [loc for loc in locations if scope.allows(loc.uuid)]


def load_resources(location_tag: str, scope: LocationFilter = UNRESTRICTED, client=None) -> InventoryResult:
    """Resolve the resources for ``location_tag`` within ``scope``.

    Always returns a fresh :class:`InventoryResult` and stores it in the
    shared cache, replacing whatever was there.
    """
    client = client or openmrs.get_client()
    key = inventory_key(location_tag, scope.cache_scope)
    ticket = resolution_cache.begin(key)

    try:
        locations = resolve_locations(client, location_tag, scope)
    except AllocationError as e:
        logger.warning("location lookup for tag %s failed: %s", location_tag, e.detail)
        result = InventoryResult(location_tag=location_tag, error=str(e.detail))
        resolution_cache.commit(key, ticket, result)
        return result

    fetched = async_to_sync(_fetch_all)(client, locations) if locations else []
    occupied = _occupied_resource_ids()

    resources_by_location: Dict[str, List[Resource]] = {}
    by_uuid: Dict[str, Location] = {}
    warnings: List[SourceWarning] = []
    failures = 0
    for location, payloads, error in fetched:
        if error is not None:
            failures += 1
            warnings.append(SourceWarning(location.uuid, location.display_name, error))
            continue
        resources = []
        for payload in payloads or []:
            resource = resource_from_payload(payload, location)
            if resource.id in occupied and not resource.is_occupied:
                resource = resource.with_status(OCCUPIED)
            resources.append(resource)
        if not resources:
            continue
        resources_by_location[location.uuid] = resources
        by_uuid[location.uuid] = location

    error = None
    if locations and failures == len(locations):
        error = f"Unable to load resources for any of {failures} location(s)"
    result = InventoryResult(
        location_tag=location_tag,
        resources_by_location=resources_by_location,
        locations=by_uuid,
        warnings=warnings,
        error=error,
    )
    resolution_cache.commit(key, ticket, result)
    return result


def cached_resources(location_tag: str, scope: LocationFilter = UNRESTRICTED, client=None,
                     refresh: bool = False) -> InventoryResult:
    """Return the cached inventory for ``(location_tag, scope)``, loading on a miss."""
    key = inventory_key(location_tag, scope.cache_scope)
    if not refresh:
        value, is_loading = resolution_cache.peek(key)
        if value is not None:
            return mark_loading(value, is_loading)
    return load_resources(location_tag, scope, client=client)
