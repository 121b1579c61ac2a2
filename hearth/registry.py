import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

log = logging.getLogger("registry")


@dataclass(frozen=True)
class Detached:
    bridge_id: str
    is_last_subscriber: bool


class SubscriptionRegistry:
    """Which live connection listens to which bridge.

    A connection belongs to at most one bridge group. Subscriber counts are
    the size of the group set, never a separate counter. Every method runs
    without suspending, so the first/last answers are consistent with the
    coordinator start/stop the caller issues right after.
    """

    def __init__(self):
        self._bridge_of: Dict[str, str] = {}
        self._groups: Dict[str, Set[str]] = {}

    def attach(self, connection_id: str, bridge_id: str) -> bool:
        """Add the connection to ``bridge_id``; True when it is the first member."""
        current = self._bridge_of.get(connection_id)
        if current == bridge_id:
            return False
        if current is not None:
            raise ValueError(f"connection {connection_id} is already attached to {current}")
        group = self._groups.setdefault(bridge_id, set())
        group.add(connection_id)
        self._bridge_of[connection_id] = bridge_id
        log.debug("Attached %s to %s (%d subscriber(s))", connection_id, bridge_id, len(group))
        return len(group) == 1

    def detach(self, connection_id: str) -> Optional[Detached]:
        bridge_id = self._bridge_of.pop(connection_id, None)
        if bridge_id is None:
            return None
        group = self._groups.get(bridge_id, set())
        group.discard(connection_id)
        last = not group
        if last:
            self._groups.pop(bridge_id, None)
        log.debug("Detached %s from %s (%d remaining)", connection_id, bridge_id, len(group))
        return Detached(bridge_id=bridge_id, is_last_subscriber=last)

    def bridge_of(self, connection_id: str) -> Optional[str]:
        return self._bridge_of.get(connection_id)

    def subscriber_count(self, bridge_id: str) -> int:
        return len(self._groups.get(bridge_id, ()))

    def members(self, bridge_id: str) -> List[str]:
        return list(self._groups.get(bridge_id, ()))

    def bridges(self) -> List[str]:
        return list(self._groups)
