"""Collapse a CRM notification burst to the events that need processing.

The CRM delivers one logical change as several notifications (a creation
followed by property changes, both ends of an association edit). Rules
are applied in order and the first match wins:

1. The burst came from automatic association by domain: drop everything.
2. Association changes all touching the first event's id pair: keep the first.
3. Events on different objects: keep everything.
4. Same object and same changed property: keep the property change.
5. Otherwise keep the creation event, when there is one.
"""

from __future__ import annotations

from typing import Any

IGNORED_SOURCES = frozenset({"INTEGRATION", "API", "AUTO_ASSOCIATE_BY_DOMAIN"})
AUTO_ASSOCIATE_SOURCE = "AUTO_ASSOCIATE_BY_DOMAIN"

Event = dict[str, Any]


def is_ignored_source(event: Event) -> bool:
    """True for notifications caused by API replays or the integration's own writes."""
    return event.get("changeSource") in IGNORED_SOURCES


def is_association_change(event: Event) -> bool:
    return str(event.get("subscriptionType", "")).endswith("associationChange")


def is_creation(event: Event) -> bool:
    return str(event.get("subscriptionType", "")).endswith("creation")


def is_property_change(event: Event) -> bool:
    return str(event.get("subscriptionType", "")).endswith("propertyChange")


def filter_duplicate_events(events: list[Event]) -> list[Event]:
    """Return the minimal subset of ``events`` that must be processed."""
    if not events:
        return []
    first = events[0]

    if first.get("changeSource") == AUTO_ASSOCIATE_SOURCE:
        return []

    if is_association_change(first):
        pair = {str(first.get("fromObjectId")), str(first.get("toObjectId"))}
        same_pair = all(
            is_association_change(event)
            and str(event.get("fromObjectId")) in pair
            and str(event.get("toObjectId")) in pair
            for event in events
        )
        return [first] if same_pair else list(events)

    object_id = str(first.get("objectId"))
    if not all(str(event.get("objectId")) == object_id for event in events):
        return list(events)

    property_name = first.get("propertyName")
    if property_name and all(event.get("propertyName") == property_name for event in events):
        change = next((event for event in events if is_property_change(event)), None)
        return [change] if change is not None else list(events)

    creation = next((event for event in events if is_creation(event)), None)
    return [creation] if creation is not None else list(events)
