import logging
from typing import Any, Dict, List, Optional
import httpx
from .errors import CredentialRejectedError, UpstreamTimeoutError, UpstreamUnreachableError

log = logging.getLogger("hive")


class HiveClient:
    """Cloud heating API. Authentication (password + SMS) happens elsewhere;
    this client only needs the resulting access token."""

    def __init__(self, base_url: str, timeout: float = 10,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def rest_get(self, token: str, path: str) -> Any:
        headers = {"Authorization": token, "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as c:
                r = await c.get(f"{self.base_url}{path}", headers=headers)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError("Hive API timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamUnreachableError(f"Cannot reach Hive API: {e}") from e
        if r.status_code in (401, 403):
            raise CredentialRejectedError("Hive rejected the access token")
        if r.is_error:
            raise UpstreamUnreachableError(f"Hive API answered {r.status_code}")
        try:
            return r.json()
        except ValueError as e:
            raise UpstreamUnreachableError("Hive API returned an invalid response") from e

    async def list_products(self, token: str) -> List[Dict[str, Any]]:
        products = await self.rest_get(token, "/products")
        if not isinstance(products, list):
            raise UpstreamUnreachableError("Hive API returned an invalid product list")
        return products


def normalize_products(products: List[Dict[str, Any]]) -> Dict[str, Any]:
    products = [p for p in products if isinstance(p, dict)]
    heating = next((p for p in products if p.get("type") == "heating"), None)
    hot_water = next((p for p in products if p.get("type") == "hotwater"), None)
    out: Dict[str, Any] = {"heating": None, "hotWater": None}
    if heating:
        props, state = heating.get("props") or {}, heating.get("state") or {}
        out["heating"] = {
            "id": heating.get("id"),
            "currentTemperature": props.get("temperature"),
            "targetTemperature": state.get("target"),
            "mode": state.get("mode"),
            "isHeating": bool(props.get("working")),
            "online": bool(props.get("online", True)),
        }
    if hot_water:
        props, state = hot_water.get("props") or {}, hot_water.get("state") or {}
        out["hotWater"] = {
            "id": hot_water.get("id"),
            "mode": state.get("mode"),
            "isOn": bool(props.get("working")),
        }
    return out
