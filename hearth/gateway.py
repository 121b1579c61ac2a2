"""Inbound side of the push protocol.

Messages from a client::

    {"type": "auth", "sessionToken": "...", "demoMode": false}
    {"type": "ping"}

Messages to a client::

    {"type": "initial_state", "data": <snapshot>}
    {"type": "state_update", "changes": [<delta>, ...]}
    {"type": "pong"}
    {"type": "error", "message": "...", "code": "..."}

Errors are always answered to the offending connection only. WebSocket
clients must send something (normally ``ping``) at least once per heartbeat
timeout or they are dropped and detached.
"""
import asyncio, logging
from typing import Any, Dict, Optional
import orjson
from .demo import DEMO_BRIDGE_ID, DEMO_IDENTITY
from .errors import AuthError, HearthError
from .polling import PollingCoordinator
from .realtime import Broadcaster, Connection
from .registry import SubscriptionRegistry
from .sessions import SessionStore

log = logging.getLogger("gateway")


def error_message(err: HearthError) -> Dict[str, Any]:
    out = {"type": "error", "message": err.message, "code": err.code}
    if getattr(err, "pairing_required", False):
        out["pairingRequired"] = True
    return out


class BroadcastGateway:
    def __init__(self, sessions: SessionStore, registry: SubscriptionRegistry,
                 coordinator: PollingCoordinator, broadcaster: Broadcaster,
                 heartbeat_interval: float = 30, heartbeat_timeout: float = 90,
                 max_queue: int = 100):
        self.sessions = sessions
        self.registry = registry
        self.coordinator = coordinator
        self.broadcaster = broadcaster
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_timeout = heartbeat_timeout
        self.max_queue = max_queue
        self._heartbeat: Optional[asyncio.Task] = None

    # connection lifecycle

    def open(self, transport: str = "websocket") -> Connection:
        conn = Connection(transport=transport, max_queue=self.max_queue)
        self.broadcaster.add(conn)
        log.info("Client %s connected via %s", conn.id, transport)
        return conn

    def disconnect(self, conn: Connection):
        self._release(conn)
        conn.close()
        self.broadcaster.remove(conn)
        log.info("Client %s disconnected (bridge %s)", conn.id, conn.bridge_id or "unknown")

    def _release(self, conn: Connection):
        detached = self.registry.detach(conn.id)
        if detached is not None and detached.is_last_subscriber:
            self.coordinator.stop(detached.bridge_id)

    # inbound messages

    async def handle_message(self, conn: Connection, raw) -> None:
        conn.touch()
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError:
            conn.send({"type": "error", "message": "Invalid JSON message", "code": "validation_error"})
            return
        if not isinstance(data, dict):
            conn.send({"type": "error", "message": "Message must be a JSON object", "code": "validation_error"})
            return

        kind = data.get("type")
        if kind == "ping":
            conn.send({"type": "pong"})
        elif kind == "auth":
            await self.authenticate(conn, data)
        else:
            log.debug("Unsupported message type %r from %s", kind, conn.id)
            conn.send({"type": "error", "message": f"Unsupported message type: {kind}",
                       "code": "validation_error"})

    def _resolve(self, data: Dict[str, Any]):
        if data.get("demoMode") is True:
            return DEMO_BRIDGE_ID, DEMO_IDENTITY, "demo"
        token = data.get("sessionToken")
        if isinstance(token, str) and token:
            session = self.sessions.lookup(token)
            if session is None:
                raise AuthError("Invalid or expired session token")
            return session.bridge_id, session.identity, "session"
        raise AuthError("Missing authentication: provide demoMode or sessionToken")

    async def authenticate(self, conn: Connection, data: Dict[str, Any]) -> bool:
        try:
            bridge_id, _identity, method = self._resolve(data)
        except AuthError as e:
            log.info("Rejected auth from %s: %s", conn.id, e)
            conn.send(error_message(e))
            return False

        if conn.bridge_id != bridge_id or self.registry.bridge_of(conn.id) is None:
            self._release(conn)
            conn.bridge_id = bridge_id
            if self.registry.attach(conn.id, bridge_id):
                self.coordinator.start(bridge_id)
        conn.auth_method = method
        log.info("Client %s authenticated to %s via %s", conn.id, bridge_id, method)

        await self.send_initial_state(conn, bridge_id)
        return True

    async def send_initial_state(self, conn: Connection, bridge_id: str):
        try:
            snapshot = await self.coordinator.latest_snapshot(bridge_id)
            if snapshot is None:
                snapshot = await self.coordinator.fetch(bridge_id)
        except HearthError as e:
            log.warning("Failed to fetch initial state for %s: %s", bridge_id, e)
            conn.send(error_message(e))
            return
        except Exception:
            log.exception("Failed to fetch initial state for %s", bridge_id)
            conn.send({"type": "error", "message": "Failed to fetch initial state",
                       "code": "internal_error"})
            return
        if conn.closed or self.registry.bridge_of(conn.id) != bridge_id:
            return
        conn.send({"type": "initial_state", "data": snapshot})

    # liveness

    def start(self):
        if self._heartbeat is None or self._heartbeat.done():
            self._heartbeat = asyncio.create_task(self._heartbeat_forever())

    async def stop(self):
        task, self._heartbeat = self._heartbeat, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for conn in self.broadcaster.connections():
            self.disconnect(conn)

    async def _heartbeat_forever(self):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                self.heartbeat()
            except Exception:
                log.exception("Heartbeat check failed")

    def heartbeat(self) -> int:
        """Drop dead connections and orphaned pollers; return connections dropped."""
        dropped = 0
        for conn in self.broadcaster.connections():
            if conn.closed:
                self.disconnect(conn)
                dropped += 1
            elif conn.expects_pings and conn.idle_for() > self.heartbeat_timeout:
                log.warning("Terminating unresponsive client %s (bridge %s)",
                            conn.id, conn.bridge_id or "unknown")
                self.disconnect(conn)
                dropped += 1

        for bridge_id in self.coordinator.running():
            if self.registry.subscriber_count(bridge_id) == 0:
                log.debug("Stopping orphaned poller for %s", bridge_id)
                self.coordinator.stop(bridge_id)
        return dropped

    def stats(self) -> Dict[str, Any]:
        polling = self.coordinator.stats()
        bridges = {}
        for bridge_id in set(self.registry.bridges()) | set(polling):
            bridges[bridge_id] = {
                "connections": self.registry.subscriber_count(bridge_id),
                "hasPolling": bridge_id in polling,
                "hasCache": bool(polling.get(bridge_id, {}).get("hasSnapshot")),
            }
        return {"totalClients": len(self.broadcaster), "bridges": bridges,
                "pollingTasks": len(polling)}
