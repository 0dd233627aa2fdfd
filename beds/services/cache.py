"""
Shared read-mostly caches for the inventory and eligibility results.

Each cached result lives under an explicit key built by the helpers
below; there is no prefix matching.  Resolutions take a ticket from a
per-key sequence before doing I/O and only commit when their ticket is
still the newest one, so a slow resolution that was superseded (scope
change, invalidation after a mutation) is discarded instead of
overwriting newer data.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Iterable, List, Optional, Tuple

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

logger = logging.getLogger(__name__)

UNRESTRICTED = '*'
UPDATES_GROUP = 'bed-updates'


def inventory_key(location_tag: str, scope_location: Optional[str] = None) -> str:
    return f"inventory:{location_tag}:{scope_location or UNRESTRICTED}"


def eligibility_key(strategy: str, endpoint: str) -> str:
    return f"eligibility:{strategy}:{endpoint}"


def configured_tags() -> List[str]:
    tags = [settings.ADMISSION_LOCATION_TAG_UUID, settings.MORTUARY_LOCATION_TAG_UUID]
    return [t for t in tags if t]


def inventory_keys_for_locations(location_uuids: Iterable[str]) -> List[str]:
    """Inventory keys whose content depends on any of ``location_uuids``.

    Covers the unrestricted entry and the per-location entry under every
    configured tag.
    """
    keys = []
    for tag in configured_tags():
        keys.append(inventory_key(tag))
        for loc in location_uuids:
            if loc:
                keys.append(inventory_key(tag, loc))
    return list(dict.fromkeys(keys))


def eligibility_keys() -> List[str]:
    from beds.services.eligibility import VISITS, EXTERNAL, endpoint_for

    return [eligibility_key(s, endpoint_for(s)) for s in (VISITS, EXTERNAL)]


def _seq_key(key: str) -> str:
    return f"{key}:seq"


def _timeout() -> int:
    return settings.BED_CACHE_TIMEOUT


class ResolutionCache:
    """Ticketed get/commit store on top of Django's cache framework."""

    def __init__(self, backend=None):
        self.backend = backend or cache

    def current(self, key: str) -> int:
        return int(self.backend.get(_seq_key(key)) or 0)

    def begin(self, key: str) -> int:
        seq = _seq_key(key)
        self.backend.add(seq, 0, None)
        try:
            return self.backend.incr(seq)
        except ValueError:
            # evicted between add() and incr()
            self.backend.set(seq, 1, None)
            return 1

    def commit(self, key: str, ticket: int, value: Any) -> bool:
        if ticket != self.current(key):
            logger.debug("discarding superseded resolution for %s (ticket %s)", key, ticket)
            return False
        self.backend.set(key, {'seq': ticket, 'value': value}, _timeout())
        return True

    def get(self, key: str) -> Any:
        entry = self.backend.get(key)
        return entry['value'] if entry else None

    def peek(self, key: str) -> Tuple[Any, bool]:
        """Return ``(value, is_loading)`` for ``key``.

        ``is_loading`` is true while a resolution newer than the committed
        value is outstanding.
        """
        entry = self.backend.get(key)
        committed = entry['seq'] if entry else 0
        return (entry['value'] if entry else None), self.current(key) > committed

    def invalidate(self, keys: Iterable[str]) -> List[str]:
        keys = list(dict.fromkeys(keys))
        if not keys:
            return keys
        self.backend.delete_many(keys)
        for key in keys:
            # bump so that in-flight resolutions cannot repopulate the entry
            self.begin(key)
        logger.info("invalidated %d cache keys", len(keys))
        return keys


resolution_cache = ResolutionCache()


def mark_loading(result, is_loading: bool):
    if result is None or getattr(result, 'is_loading', None) == is_loading:
        return result
    return replace(result, is_loading=is_loading)


def broadcast_refresh(keys: Iterable[str], reason: str = '') -> None:
    """Tell connected clients which cached views went stale."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    now = timezone.now()
    event = {
        'type': 'inventory.refresh',
        'version': int(now.timestamp()),
        'ts': now.isoformat(),
        'reason': reason,
        'keys': list(keys)[:50],
    }
    async_to_sync(channel_layer.group_send)(UPDATES_GROUP, event)
