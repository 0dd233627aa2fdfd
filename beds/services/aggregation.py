"""Per-location occupancy counts derived from the resource inventory."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from django.conf import settings

from beds.services.inventory import cached_resources
from beds.services.mapping import Location, Resource
from beds.services.scope import UNRESTRICTED, LocationFilter


@dataclass(frozen=True)
class AggregateCount:
    location_id: str
    display_name: str
    total_resources: int
    occupied_resources: int
    mortuary: bool = False

    @property
    def available_resources(self) -> int:
        return self.total_resources - self.occupied_resources

    @property
    def total_compartments(self) -> Optional[int]:
        return self.total_resources if self.mortuary else None


def aggregate(
    resources_by_location: Mapping[str, Sequence[Resource]],
    *,
    mortuary: bool = False,
    locations: Optional[Mapping[str, Location]] = None,
) -> List[AggregateCount]:
    counts = []
    for location_id, resources in resources_by_location.items():
        if not resources:
            continue
        location = (locations or {}).get(location_id) or resources[0].location
        counts.append(AggregateCount(
            location_id=location_id,
            display_name=location.display_name,
            total_resources=len(resources),
            occupied_resources=sum(1 for r in resources if r.is_occupied),
            mortuary=mortuary,
        ))
    return counts


def format_aggregate(count: AggregateCount) -> dict:
    data = {
        'locationUuid': count.location_id,
        'display': count.display_name,
        'totalBeds': count.total_resources,
        'occupiedBeds': count.occupied_resources,
        'availableBeds': count.available_resources,
    }
    if count.mortuary:
        data['totalCompartments'] = count.total_compartments
    return data


def summary(scope: LocationFilter = UNRESTRICTED, client=None, refresh: bool = False) -> Dict[str, dict]:
    """Dashboard payload: ward and mortuary counts side by side."""
    out: Dict[str, dict] = {}
    sections = (
        ('wards', settings.ADMISSION_LOCATION_TAG_UUID, False),
        ('mortuary', settings.MORTUARY_LOCATION_TAG_UUID, True),
    )
    for name, tag, is_mortuary in sections:
        if not tag:
            out[name] = {'aggregates': [], 'warnings': [], 'error': None}
            continue
        result = cached_resources(tag, scope, client=client, refresh=refresh)
        out[name] = {
            'aggregates': [
                format_aggregate(c)
                for c in aggregate(result.resources_by_location, mortuary=is_mortuary, locations=result.locations)
            ],
            'warnings': [w.message for w in result.warnings],
            'error': result.error,
        }
    return out
