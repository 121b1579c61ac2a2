import logging
import anyio
from typing import Optional
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .api import Components, router as api_router
from .connectors import ConnectorCatalog, default_catalog
from .credentials import CredentialStore
from .errors import HearthError
from .gateway import BroadcastGateway
from .polling import PollingCoordinator
from .ratelimit import RateLimiter
from .realtime import Broadcaster, Connection
from .registry import SubscriptionRegistry
from .sessions import SessionStore
from .settings import Settings
from .state import SnapshotAggregator

log = logging.getLogger("main")


def build_components(settings: Settings, catalog: Optional[ConnectorCatalog] = None,
                     fetch=None) -> Components:
    """Wire every component explicitly; nothing here is a module global."""
    credentials = CredentialStore(settings.CREDENTIALS_PATH)
    if catalog is None:
        catalog = default_catalog(settings, credentials)
    aggregator = SnapshotAggregator(catalog, service_timeout=settings.SERVICE_TIMEOUT_SECONDS)
    sessions = SessionStore(expiry=settings.SESSION_EXPIRY_SECONDS,
                            sweep_interval=settings.SESSION_SWEEP_INTERVAL_SECONDS)
    registry = SubscriptionRegistry()
    broadcaster = Broadcaster(registry)
    coordinator = PollingCoordinator(fetch or aggregator.fetch_snapshot,
                                     broadcaster.publish_changes,
                                     interval=settings.POLL_INTERVAL_SECONDS,
                                     timeout=settings.FETCH_TIMEOUT_SECONDS)
    gateway = BroadcastGateway(sessions, registry, coordinator, broadcaster,
                               heartbeat_interval=settings.HEARTBEAT_INTERVAL_SECONDS,
                               heartbeat_timeout=settings.HEARTBEAT_TIMEOUT_SECONDS,
                               max_queue=settings.OUTBOUND_QUEUE_SIZE)
    limiter = RateLimiter(settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS)
    credential_limiter = RateLimiter(settings.SESSION_RATE_LIMIT_REQUESTS,
                                     settings.RATE_LIMIT_WINDOW_SECONDS)
    return Components(settings=settings, sessions=sessions, credentials=credentials,
                      catalog=catalog, aggregator=aggregator, coordinator=coordinator,
                      gateway=gateway, limiter=limiter, credential_limiter=credential_limiter)


def create_app(settings: Optional[Settings] = None, **overrides) -> FastAPI:
    settings = settings or Settings()
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, "INFO"))
    components = build_components(settings, **overrides)

    app = FastAPI(title="Hearth", version="0.1.0")
    app.state.components = components
    app.include_router(api_router)
    app.add_middleware(CORSMiddleware, allow_origins=settings.CORS_ORIGINS,
                       allow_methods=["*"], allow_headers=["*"])

    @app.exception_handler(HearthError)
    async def hearth_error(request: Request, exc: HearthError):
        if exc.status_code >= 500:
            log.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=exc.headers())

    @app.on_event("startup")
    async def on_start():
        components.credentials.load()
        components.sessions.start_sweeper()
        components.gateway.start()

    @app.on_event("shutdown")
    async def on_stop():
        await components.gateway.stop()
        await components.coordinator.shutdown()
        await components.sessions.stop_sweeper()

    @app.websocket("/api/v1/ws")
    async def ws(websocket: WebSocket):
        await websocket.accept()
        gateway = components.gateway
        conn = gateway.open()
        try:
            # whichever side finishes first cancels the other
            async with anyio.create_task_group() as tg:
                tg.start_soon(_read, websocket, gateway, conn, tg.cancel_scope)
                tg.start_soon(_write, websocket, conn, tg.cancel_scope)
        finally:
            gateway.disconnect(conn)

    @app.get("/")
    def root():
        return {"name": "hearth", "status": "ok"}

    return app


async def _read(websocket: WebSocket, gateway: BroadcastGateway, conn: Connection,
                scope: anyio.CancelScope):
    try:
        while True:
            raw = await websocket.receive_text()
            await gateway.handle_message(conn, raw)
    except WebSocketDisconnect:
        log.debug("Client %s closed the socket", conn.id)
    finally:
        scope.cancel()


async def _write(websocket: WebSocket, conn: Connection, scope: anyio.CancelScope):
    try:
        async for message in conn.messages():
            await websocket.send_json(message)
        # the gateway closed this connection (heartbeat, overflow or shutdown)
        await websocket.close()
    except WebSocketDisconnect:
        log.debug("Client %s went away before its messages were sent", conn.id)
    finally:
        scope.cancel()


def run():
    import uvicorn

    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.HOST, port=settings.PORT,
                ws_ping_interval=settings.WS_PING_INTERVAL)


if __name__ == "__main__":
    run()
