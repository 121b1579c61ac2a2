from sse_starlette.sse import EventSourceResponse
from typing import Any, AsyncIterator, Dict
import orjson
from .gateway import BroadcastGateway
from .realtime import Connection

def _event(message: Dict[str, Any]) -> Dict[str, str]:
    return {"event": message.get("type", "message"), "data": orjson.dumps(message).decode()}

async def open_stream(gateway: BroadcastGateway, auth: Dict[str, Any]) -> Connection:
    """Open an event-stream connection and authenticate it up front.

    A rejected client keeps its error message queued and the connection is
    closed, so the stream delivers the error event and then ends.
    """
    conn = gateway.open(transport="sse")
    if not await gateway.authenticate(conn, auth):
        conn.close()
    return conn

async def events(gateway: BroadcastGateway, conn: Connection) -> AsyncIterator[Dict[str, str]]:
    try:
        async for message in conn.messages():
            yield _event(message)
    finally:
        gateway.disconnect(conn)

async def sse_stream(gateway: BroadcastGateway, auth: Dict[str, Any], ping: int = 15) -> EventSourceResponse:
    """Serve the push protocol as Server-Sent Events for clients without WebSockets."""
    conn = await open_stream(gateway, auth)
    return EventSourceResponse(events(gateway, conn), ping=ping)
