from collections.abc import Callable
from typing import Any

import structlog

from app.models.model import ConversionEvent

logger = structlog.get_logger(__name__)

GCLID_KEYS = ("gclid", "$initial_gclid")

Extractor = Callable[[ConversionEvent], str | None]
PersonLookup = Callable[[str], list[dict[str, Any]]]


def find_gclid(properties: Any) -> str | None:
    """Return the first non-empty gclid under any of GCLID_KEYS."""
    if not isinstance(properties, dict):
        return None
    for key in GCLID_KEYS:
        value = properties.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def from_event_properties(event: ConversionEvent) -> str | None:
    return find_gclid(event.properties)


def from_person_snapshot(event: ConversionEvent) -> str | None:
    return find_gclid(event.person_properties)


def from_pending_set(event: ConversionEvent) -> str | None:
    return find_gclid(event.properties.get("$set"))


def from_pending_set_once(event: ConversionEvent) -> str | None:
    return find_gclid(event.properties.get("$set_once"))


# Checked in order, first hit wins.
EXTRACTORS: list[Extractor] = [
    from_event_properties,
    from_person_snapshot,
    from_pending_set,
    from_pending_set_once,
]


class GclidResolver:
    """
    Resolves the gclid for each event within a single run.

    Order: the event itself (see EXTRACTORS), then gclids already resolved
    for the same distinct id, then one live person lookup per distinct id.
    A distinct id is marked as queried as soon as its lookup returns, so a
    person without a gclid is never looked up twice in the same run.
    """

    def __init__(self, lookup: PersonLookup, extractors: list[Extractor] | None = None) -> None:
        self.lookup = lookup
        self.extractors = extractors if extractors is not None else EXTRACTORS
        self.cache: dict[str, str] = {}
        self.queried: set[str] = set()
        self.lookups = 0

    def _lookup_person(self, distinct_id: str) -> str | None:
        self.lookups += 1
        try:
            persons = self.lookup(distinct_id)
        finally:
            self.queried.add(distinct_id)

        for person in persons:
            if not isinstance(person, dict):
                continue
            gclid = find_gclid(person.get("properties"))
            if gclid:
                return gclid
        return None

    def resolve(self, event: ConversionEvent) -> str | None:
        distinct_id = event.distinct_id

        gclid = next((hit for hit in (extract(event) for extract in self.extractors) if hit), None)
        if gclid is None:
            gclid = self.cache.get(distinct_id)
        if gclid is None and distinct_id not in self.queried:
            gclid = self._lookup_person(distinct_id)

        if gclid:
            self.cache[distinct_id] = gclid
        else:
            logger.info("gclid_not_found", distinct_id=distinct_id, action_id=event.action_id)
        return gclid
