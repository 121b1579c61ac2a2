import asyncio, logging, time, uuid
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
from .models import Delta
from .registry import SubscriptionRegistry

log = logging.getLogger("realtime")

_CLOSE = object()


class Connection:
    """Outbound side of one client: a bounded message queue plus auth state.

    The transport (WebSocket or event stream) drains ``messages()``; the
    gateway only ever enqueues, so sending never suspends the caller.
    """

    def __init__(self, transport: str = "websocket", max_queue: int = 100,
                 clock: Callable[[], float] = time.monotonic):
        self.id = uuid.uuid4().hex
        self.transport = transport
        self.bridge_id: Optional[str] = None
        self.auth_method: Optional[str] = None
        self.closed = False
        self._clock = clock
        self.last_seen = clock()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)

    @property
    def expects_pings(self) -> bool:
        return self.transport == "websocket"

    def touch(self):
        self.last_seen = self._clock()

    def idle_for(self) -> float:
        return self._clock() - self.last_seen

    def send(self, message: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            log.warning("Outbound queue full for %s, dropping connection", self.id)
            self.close()
            return False
        return True

    def close(self):
        if self.closed:
            return
        self.closed = True
        # queued messages are still flushed; only make room for the marker
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSE)

    async def messages(self) -> AsyncIterator[Dict[str, Any]]:
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            yield item

    def pending(self) -> List[Dict[str, Any]]:
        """Drain queued messages without waiting (used by tests and diagnostics)."""
        out = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSE:
                self._queue.put_nowait(_CLOSE)
                break
            out.append(item)
        return out


class Broadcaster:
    """Fans messages out to the connections of one bridge group."""

    def __init__(self, registry: SubscriptionRegistry):
        self._registry = registry
        self._connections: Dict[str, Connection] = {}

    def add(self, conn: Connection):
        self._connections[conn.id] = conn

    def remove(self, conn: Connection):
        self._connections.pop(conn.id, None)

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    def __len__(self) -> int:
        return len(self._connections)

    def broadcast(self, bridge_id: str, message: Dict[str, Any]) -> int:
        sent = 0
        for cid in self._registry.members(bridge_id):
            conn = self._connections.get(cid)
            if conn is not None and conn.send(message):
                sent += 1
        if sent:
            log.debug("Broadcast %s to %d client(s) of %s", message.get("type"), sent, bridge_id)
        return sent

    def publish_changes(self, bridge_id: str, deltas: List[Delta]) -> int:
        return self.broadcast(bridge_id, {
            "type": "state_update",
            "changes": [d.to_message() for d in deltas],
        })
