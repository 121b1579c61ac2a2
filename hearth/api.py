import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from .connectors import ConnectorCatalog
from .credentials import CredentialStore
from .demo import DEMO_BRIDGE_ID, DEMO_IDENTITY
from .errors import AuthError, PairingRequiredError, ValidationError
from .gateway import BroadcastGateway
from .models import BridgeStatus, ServiceCredential, SessionRequest, SessionResponse, SessionStats
from .polling import PollingCoordinator
from .ratelimit import RateLimiter, client_key
from .sessions import SessionStore, SessionView
from .settings import Settings
from .sse import sse_stream
from .state import SnapshotAggregator

log = logging.getLogger("api")

bearer = HTTPBearer(auto_error=False)


@dataclass
class Components:
    settings: Settings
    sessions: SessionStore
    credentials: CredentialStore
    catalog: ConnectorCatalog
    aggregator: SnapshotAggregator
    coordinator: PollingCoordinator
    gateway: BroadcastGateway
    limiter: RateLimiter
    credential_limiter: RateLimiter


def components(request: Request) -> Components:
    return request.app.state.components


async def rate_limit(request: Request, response: Response, c: Components = Depends(components)):
    response.headers.update(c.limiter.hit(client_key(request)))


async def credential_rate_limit(request: Request, response: Response,
                                c: Components = Depends(components)):
    response.headers.update(c.credential_limiter.hit(client_key(request)))


router = APIRouter(prefix="/api/v1", dependencies=[Depends(rate_limit)])


def require_session(auth: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
                    c: Components = Depends(components)) -> Tuple[str, SessionView]:
    if auth is None or not auth.credentials:
        raise AuthError("Missing session token in Authorization header")
    session = c.sessions.lookup(auth.credentials)
    if session is None:
        raise AuthError()
    return auth.credentials, session


def _session_response(c: Components, bridge_id: str, identity: str) -> dict:
    session = c.sessions.create(bridge_id, identity)
    return SessionResponse(token=session.token, expires_in=session.expires_in,
                           bridge_id=bridge_id).model_dump(by_alias=True)


@router.post("/session", dependencies=[Depends(credential_rate_limit)])
async def create_session(req: SessionRequest, c: Components = Depends(components)):
    if req.demo_mode:
        return _session_response(c, DEMO_BRIDGE_ID, DEMO_IDENTITY)
    if not req.bridge_id:
        raise ValidationError("bridgeId is required")
    if req.bridge_id in c.catalog.account_keys():
        raise ValidationError(f"{req.bridge_id!r} is reserved and cannot be used as a bridge id")

    if req.credential:
        await c.aggregator.validate(req.bridge_id, req.credential)
        await c.credentials.store(req.bridge_id, req.credential)
        identity = req.credential
    else:
        identity = c.credentials.get(req.bridge_id)
        if identity is None:
            raise PairingRequiredError(req.bridge_id)
    return _session_response(c, req.bridge_id, identity)


@router.delete("/session")
def delete_session(auth=Depends(require_session), c: Components = Depends(components)):
    token, _ = auth
    return {"success": c.sessions.revoke(token)}


@router.post("/session/refresh")
def refresh_session(auth=Depends(require_session), c: Components = Depends(components)):
    token, session = auth
    c.sessions.revoke(token)
    return _session_response(c, session.bridge_id, session.identity)


@router.get("/session/stats")
def session_stats(c: Components = Depends(components)):
    return SessionStats(**c.sessions.stats()).model_dump(by_alias=True)


@router.get("/bridge-status")
def bridge_status(bridge_id: str = Query(..., alias="bridgeId"), c: Components = Depends(components)):
    return BridgeStatus(bridge_id=bridge_id,
                        has_credentials=c.credentials.has(bridge_id)).model_dump(by_alias=True)


@router.post("/disconnect")
async def disconnect(auth=Depends(require_session), c: Components = Depends(components)):
    """Revoke the session and forget the bridge credential."""
    token, session = auth
    c.sessions.revoke(token)
    if session.bridge_id != DEMO_BRIDGE_ID:
        await c.credentials.clear(session.bridge_id)
        log.info("Forgot credential for bridge %s", session.bridge_id)
    return {"success": True}


@router.get("/home")
async def home(auth=Depends(require_session), c: Components = Depends(components)):
    _, session = auth
    snapshot = c.coordinator.cached(session.bridge_id)
    if snapshot is None:
        snapshot = await c.coordinator.fetch(session.bridge_id)
    return snapshot


@router.get("/services")
def services(demo: bool = False, c: Components = Depends(components)):
    return c.catalog.metadata(demo)


@router.post("/services/{service_id}/connect", dependencies=[Depends(credential_rate_limit)])
async def connect_service(service_id: str, req: ServiceCredential, auth=Depends(require_session),
                          c: Components = Depends(components)):
    """Validate and store an account credential (e.g. a Hive access token)."""
    if not req.credential:
        raise ValidationError("credential is required")
    key = await c.aggregator.connect_account(service_id, req.credential)
    await c.credentials.store(key, req.credential)
    log.info("Connected account service %s", service_id)
    return {"success": True, "service": service_id}


@router.post("/services/{service_id}/disconnect")
async def disconnect_service(service_id: str, auth=Depends(require_session),
                             c: Components = Depends(components)):
    connector = c.aggregator.account_connector(service_id)
    await c.credentials.clear(connector.account_key)
    log.info("Disconnected account service %s", service_id)
    return {"success": True, "service": service_id}


@router.get("/realtime/stats")
def realtime_stats(c: Components = Depends(components)):
    return c.gateway.stats()


@router.get("/status/stream")
async def status_stream(token: Optional[str] = None, demo: bool = False,
                        c: Components = Depends(components)):
    auth = {"demoMode": True} if demo else {"sessionToken": token}
    return await sse_stream(c.gateway, auth)
