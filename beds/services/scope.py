"""Access scope resolution: which locations a session may allocate within."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from django.conf import settings


@dataclass(frozen=True)
class LocationFilter:
    """Location filter applied to inventory queries.

    ``restricted`` filters pin every query to ``location_uuid``.  An
    unrestricted filter may still carry ``default_location`` (a
    pre-selected candidate's location) as the initial selection.
    """
    restricted: bool = False
    location_uuid: Optional[str] = None
    default_location: Optional[str] = None

    def allows(self, location_uuid: str) -> bool:
        return not self.restricted or location_uuid == self.location_uuid

    @property
    def selected_location(self) -> Optional[str]:
        return self.location_uuid if self.restricted else self.default_location

    @property
    def requires_selection(self) -> bool:
        return not self.selected_location

    @property
    def cache_scope(self) -> Optional[str]:
        return self.location_uuid if self.restricted else None


UNRESTRICTED = LocationFilter()


def resolve_scope(
    session_location: Optional[str],
    restrict: Optional[bool] = None,
    default_location: Optional[str] = None,
) -> LocationFilter:
    if restrict is None:
        restrict = settings.RESTRICT_WARD_ADMINISTRATION_TO_LOGIN_LOCATION
    if restrict and session_location:
        return LocationFilter(restricted=True, location_uuid=session_location)
    # no session location under a restrictive flag degrades to "nothing selected"
    return LocationFilter(restricted=False, default_location=default_location or None)


def session_location_for_request(request) -> Optional[str]:
    header = request.headers.get('X-Session-Location') if hasattr(request, 'headers') else None
    if header:
        return header.strip() or None
    return getattr(request.user, 'session_location', '') or None


def scope_for_request(request, default_location: Optional[str] = None) -> LocationFilter:
    return resolve_scope(session_location_for_request(request), default_location=default_location)
