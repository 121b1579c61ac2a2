"""Section-level change detection between two bridge snapshots.

A snapshot is split into logical sections: the summary counters, every room
(by id), every device inside a room, every zone and motion zone (by id) and
every named service sub-state. A section whose value differs from the
previous snapshot, or that has no previous counterpart, yields one ``Delta``
carrying the section's entire current value. Deletions are not reported.

Equality is Python structural equality, so two mappings holding the same
items in a different insertion order compare equal.
"""
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple
from .models import Delta, Snapshot

SUMMARY = "summary"
ROOM = "room"
DEVICE = "device"
ZONE = "zone"
MOTION_ZONE = "motion_zone"
SERVICE = "service"


def _index(items: Optional[Iterable[Any]]) -> Dict[Any, Mapping[str, Any]]:
    out = {}
    for item in items or ():
        if isinstance(item, Mapping) and "id" in item:
            out[item["id"]] = item
    return out


def _by_id(items: Optional[Iterable[Any]]) -> Iterator[Tuple[Any, Mapping[str, Any]]]:
    for item in items or ():
        if isinstance(item, Mapping) and "id" in item:
            yield item["id"], item


def _changed(previous: Any, current: Any) -> bool:
    return previous is None or previous != current


def _scope(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def diff(previous: Optional[Snapshot], current: Snapshot) -> List[Delta]:
    """Return the ordered deltas that turn ``previous`` into ``current``.

    Order: summary, rooms in snapshot order, devices in room order, zones,
    motion zones, then services in registration order.
    """
    if previous is current:
        return []
    prev = previous or {}
    deltas: List[Delta] = []

    summary = current.get("summary")
    if summary and _changed(prev.get("summary"), summary):
        deltas.append(Delta(kind=SUMMARY, payload=summary))

    prev_rooms = _index(prev.get("rooms"))
    rooms = list(_by_id(current.get("rooms")))
    for room_id, room in rooms:
        if _changed(prev_rooms.get(room_id), room):
            deltas.append(Delta(kind=ROOM, payload=room, scope=_scope(room_id)))

    for room_id, room in rooms:
        prev_room = prev_rooms.get(room_id)
        if prev_room is not None and prev_room == room:
            continue
        prev_devices = _index(prev_room.get("devices")) if prev_room else {}
        for device_id, device in _by_id(room.get("devices")):
            if _changed(prev_devices.get(device_id), device):
                deltas.append(Delta(kind=DEVICE, payload=device, scope=_scope(room_id)))

    for key, kind in (("zones", ZONE), ("motionZones", MOTION_ZONE)):
        prev_items = _index(prev.get(key))
        for item_id, item in _by_id(current.get(key)):
            if _changed(prev_items.get(item_id), item):
                deltas.append(Delta(kind=kind, payload=item, scope=_scope(item_id)))

    prev_services = prev.get("services") or {}
    for service_id, state in (current.get("services") or {}).items():
        if state is None:
            continue
        if _changed(prev_services.get(service_id), state):
            deltas.append(Delta(kind=SERVICE, payload=state, scope=service_id))

    return deltas
