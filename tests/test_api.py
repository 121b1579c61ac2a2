from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import make_snapshot

from hearth.connectors import (
    ConnectorCatalog,
    HiveDemoConnector,
    HueConnector,
    HueDemoConnector,
    ServiceConnector,
)
from hearth.errors import CredentialRejectedError, PairingRequiredError
from hearth.hue_client import HueClient
from hearth.main import create_app
from hearth.settings import Settings


class FakeHue(ServiceConnector):
    service_id = "hue"

    def __init__(self, credentials):
        self.credentials = credentials

    async def connect(self, bridge_id, credential):
        if credential != "good-key":
            raise CredentialRejectedError("Bridge rejected the credential")

    async def get_snapshot(self, bridge_id):
        if self.credentials.get(bridge_id) is None:
            raise PairingRequiredError(bridge_id)
        return make_snapshot()

    def is_connected(self, bridge_id):
        return self.credentials.has(bridge_id)


class FakeHive(ServiceConnector):
    service_id = "hive"
    account_key = "hive"

    def __init__(self, credentials):
        self.credentials = credentials

    async def connect(self, bridge_id, credential):
        if credential != "hive-token":
            raise CredentialRejectedError("Hive rejected the access token")

    async def get_snapshot(self, bridge_id):
        return {"heating": {"mode": "MANUAL"}, "hotWater": None}

    def is_connected(self, bridge_id):
        return self.credentials.has("hive")


def default_connectors(credentials):
    return [FakeHue(credentials), FakeHive(credentials), HueDemoConnector(), HiveDemoConnector()]


def build_app(tmp_path, connectors=default_connectors, **overrides):
    settings = Settings(
        CREDENTIALS_PATH=str(tmp_path / "creds.json"),
        POLL_INTERVAL_SECONDS=3600,
        HEARTBEAT_INTERVAL_SECONDS=3600,
        SESSION_SWEEP_INTERVAL_SECONDS=3600,
        **overrides,
    )
    catalog = ConnectorCatalog()
    app = create_app(settings, catalog=catalog)
    for connector in connectors(app.state.components.credentials):
        catalog.register(connector)
    return app


@pytest.fixture
def app(tmp_path):
    return build_app(tmp_path)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def _pair(client, bridge_id="10.0.0.2", credential="good-key"):
    r = client.post("/api/v1/session", json={"bridgeId": bridge_id, "credential": credential})
    assert r.status_code == 200, r.text
    return r.json()


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_root(client):
    assert client.get("/").json() == {"name": "hearth", "status": "ok"}


def test_create_session_stores_credential(client, app):
    body = _pair(client)

    assert body["bridgeId"] == "10.0.0.2"
    assert body["expiresIn"] == 24 * 60 * 60
    assert body["token"]
    assert app.state.components.credentials.get("10.0.0.2") == "good-key"
    assert client.get("/api/v1/bridge-status", params={"bridgeId": "10.0.0.2"}).json() == {
        "bridgeId": "10.0.0.2",
        "hasCredentials": True,
    }


def test_create_session_rejects_bad_credential(client):
    r = client.post("/api/v1/session", json={"bridgeId": "10.0.0.2", "credential": "nope"})

    assert r.status_code == 401
    assert r.json()["code"] == "invalid_credential"


def test_create_session_requires_bridge_id(client):
    r = client.post("/api/v1/session", json={"credential": "good-key"})

    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"


def test_unpaired_bridge_requires_pairing(client):
    r = client.post("/api/v1/session", json={"bridgeId": "10.0.0.9"})

    assert r.status_code == 428
    assert r.json()["pairingRequired"] is True
    assert r.json()["bridgeId"] == "10.0.0.9"


def test_paired_bridge_reuses_stored_credential(client):
    _pair(client)

    r = client.post("/api/v1/session", json={"bridgeId": "10.0.0.2"})

    assert r.status_code == 200
    assert r.json()["bridgeId"] == "10.0.0.2"


def test_demo_session(client):
    r = client.post("/api/v1/session", json={"demoMode": True})

    assert r.status_code == 200
    assert r.json()["bridgeId"] == "demo-bridge"


def test_refresh_revokes_old_token(client):
    old = _pair(client)["token"]

    r = client.post("/api/v1/session/refresh", headers=_bearer(old))
    assert r.status_code == 200
    new = r.json()["token"]

    assert new != old
    assert client.delete("/api/v1/session", headers=_bearer(old)).status_code == 401
    assert client.delete("/api/v1/session", headers=_bearer(new)).json() == {"success": True}
    assert client.get("/api/v1/home", headers=_bearer(new)).status_code == 401


def test_missing_bearer(client):
    r = client.delete("/api/v1/session")

    assert r.status_code == 401
    assert "Authorization" in r.json()["error"]


def test_session_stats(client):
    _pair(client)
    _pair(client)

    stats = client.get("/api/v1/session/stats").json()

    assert stats["activeSessions"] == 2
    assert stats["oldestAgeMs"] >= stats["newestAgeMs"] >= 0


def test_disconnect_clears_credential(client, app):
    token = _pair(client)["token"]

    assert client.post("/api/v1/disconnect", headers=_bearer(token)).json() == {"success": True}

    assert app.state.components.credentials.get("10.0.0.2") is None
    assert client.get("/api/v1/home", headers=_bearer(token)).status_code == 401


def test_home_fetches_snapshot(client):
    token = _pair(client)["token"]

    home = client.get("/api/v1/home", headers=_bearer(token)).json()

    assert home["summary"] == make_snapshot()["summary"]
    assert home["services"] == {}


def test_services_metadata(client):
    ids = [m["id"] for m in client.get("/api/v1/services", params={"demo": True}).json()]
    assert ids == ["hue", "hive"]


def test_websocket_demo_flow(client):
    with client.websocket_connect("/api/v1/ws") as ws:
        ws.send_json({"type": "auth", "demoMode": True})
        message = ws.receive_json()
        assert message["type"] == "initial_state"
        assert message["data"]["summary"]["totalLights"] == 8
        assert message["data"]["services"]["hive"]["heating"]["mode"] == "SCHEDULE"

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        stats = client.get("/api/v1/realtime/stats").json()
        assert stats["bridges"]["demo-bridge"]["hasPolling"] is True
        assert stats["totalClients"] == 1

    after = client.get("/api/v1/realtime/stats").json()
    assert after["totalClients"] == 0
    assert after["pollingTasks"] == 0


def test_websocket_session_flow(client):
    token = _pair(client)["token"]

    with client.websocket_connect("/api/v1/ws") as ws:
        ws.send_json({"type": "auth", "sessionToken": "bogus"})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["message"] == "Invalid or expired session token"

        ws.send_json({"type": "auth", "sessionToken": token})
        message = ws.receive_json()
        assert message["type"] == "initial_state"
        assert message["data"]["rooms"][0]["id"] == "room-1"


def test_invalid_upstream_response_is_bad_gateway(tmp_path):
    garbage = httpx.MockTransport(lambda request: httpx.Response(200, text="not json"))
    app = build_app(tmp_path, connectors=lambda credentials: [
        HueConnector(HueClient(transport=garbage), credentials)])

    with TestClient(app) as client:
        r = client.post("/api/v1/session", json={"bridgeId": "10.0.0.9", "credential": "k"})

    assert r.status_code == 502
    assert r.json()["code"] == "upstream_unreachable"


@pytest.mark.parametrize("body", [{"bridgeId": "hive", "credential": "hive-token"}, {"bridgeId": "hive"}])
def test_account_keys_are_not_bridge_ids(client, body):
    r = client.post("/api/v1/session", json=body)

    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"


def test_connect_and_disconnect_account_service(client, app):
    token = _pair(client)["token"]
    credentials = app.state.components.credentials

    r = client.post("/api/v1/services/hive/connect", json={"credential": "hive-token"},
                    headers=_bearer(token))
    assert r.json() == {"success": True, "service": "hive"}
    assert credentials.get("hive") == "hive-token"

    home = client.get("/api/v1/home", headers=_bearer(token)).json()
    assert home["services"] == {"hive": {"heating": {"mode": "MANUAL"}, "hotWater": None}}

    r = client.post("/api/v1/services/hive/disconnect", headers=_bearer(token))
    assert r.json() == {"success": True, "service": "hive"}
    assert credentials.get("hive") is None
    assert credentials.get("10.0.0.2") == "good-key"


def test_connect_account_service_errors(client):
    token = _pair(client)["token"]

    rejected = client.post("/api/v1/services/hive/connect", json={"credential": "stale"},
                           headers=_bearer(token))
    assert rejected.status_code == 401
    assert rejected.json()["code"] == "invalid_credential"

    not_an_account = client.post("/api/v1/services/hue/connect", json={"credential": "x"},
                                 headers=_bearer(token))
    assert not_an_account.status_code == 400

    missing = client.post("/api/v1/services/hive/connect", json={}, headers=_bearer(token))
    assert missing.status_code == 400

    anonymous = client.post("/api/v1/services/hive/connect", json={"credential": "hive-token"})
    assert anonymous.status_code == 401


def test_session_route_is_rate_limited(tmp_path):
    app = build_app(tmp_path, SESSION_RATE_LIMIT_REQUESTS=2)

    with TestClient(app) as client:
        first = client.post("/api/v1/session", json={"demoMode": True})
        client.post("/api/v1/session", json={"demoMode": True})
        limited = client.post("/api/v1/session", json={"demoMode": True})
        other = client.post("/api/v1/session", json={"demoMode": True},
                            headers={"X-Forwarded-For": "192.168.1.40, 10.0.0.1"})
        stats = client.get("/api/v1/session/stats")

    assert first.headers["X-RateLimit-Limit"] == "2"
    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert limited.status_code == 429
    assert limited.json()["code"] == "rate_limit_exceeded"
    assert int(limited.headers["Retry-After"]) > 0
    assert other.status_code == 200
    assert stats.status_code == 200


def test_rest_surface_is_rate_limited(tmp_path):
    app = build_app(tmp_path, RATE_LIMIT_REQUESTS=3)

    with TestClient(app) as client:
        codes = [client.get("/api/v1/services").status_code for _ in range(4)]
        root = client.get("/")

    assert codes == [200, 200, 200, 429]
    assert root.status_code == 200
