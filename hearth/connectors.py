"""Upstream services behind one capability interface.

Each service has a real and a demo variant. Which one serves a request is a
table lookup on ``(service_id, demo)``; callers never inspect types.
"""
import logging
from typing import Any, Dict, List, Optional, Set, Tuple
from . import demo as demo_data
from .credentials import CredentialStore
from .errors import PairingRequiredError
from .hive_client import HiveClient, normalize_products
from .hue_client import HueClient, build_snapshot
from .models import Snapshot

log = logging.getLogger("connectors")

HUE = "hue"
HIVE = "hive"

# cloud accounts are not bridges; the Hive token lives under this key
HIVE_ACCOUNT_KEY = "hive"


class ServiceConnector:
    service_id = "base"
    display_name = "Base service"
    demo = False
    # credential-store key for account-level services; None when scoped per bridge
    account_key: Optional[str] = None

    async def connect(self, bridge_id: str, credential: str) -> None:
        """Validate ``credential`` against the service; raise on rejection."""
        raise NotImplementedError

    async def get_snapshot(self, bridge_id: str) -> Snapshot:
        raise NotImplementedError

    def is_connected(self, bridge_id: str) -> bool:
        raise NotImplementedError

    def metadata(self) -> Dict[str, Any]:
        return {"id": self.service_id, "displayName": self.display_name, "demo": self.demo}


class HueConnector(ServiceConnector):
    service_id = HUE
    display_name = "Philips Hue"

    def __init__(self, client: HueClient, credentials: CredentialStore):
        self.client = client
        self.credentials = credentials

    async def connect(self, bridge_id, credential):
        await self.client.get_lights(bridge_id, credential)

    async def get_snapshot(self, bridge_id):
        username = self.credentials.get(bridge_id)
        if username is None:
            raise PairingRequiredError(bridge_id)
        return build_snapshot(await self.client.get_resources(bridge_id, username))

    def is_connected(self, bridge_id):
        return self.credentials.has(bridge_id)


class HueDemoConnector(ServiceConnector):
    service_id = HUE
    display_name = "Philips Hue (Demo)"
    demo = True

    async def connect(self, bridge_id, credential):
        return None

    async def get_snapshot(self, bridge_id):
        return build_snapshot(demo_data.hue_resources())

    def is_connected(self, bridge_id):
        return True


class HiveConnector(ServiceConnector):
    service_id = HIVE
    display_name = "Hive Heating"
    account_key = HIVE_ACCOUNT_KEY

    def __init__(self, client: HiveClient, credentials: CredentialStore):
        self.client = client
        self.credentials = credentials

    async def connect(self, bridge_id, credential):
        await self.client.list_products(credential)

    async def get_snapshot(self, bridge_id):
        token = self.credentials.get(HIVE_ACCOUNT_KEY)
        if token is None:
            raise PairingRequiredError(HIVE_ACCOUNT_KEY)
        return normalize_products(await self.client.list_products(token))

    def is_connected(self, bridge_id):
        return self.credentials.has(HIVE_ACCOUNT_KEY)


class HiveDemoConnector(ServiceConnector):
    service_id = HIVE
    display_name = "Hive Heating (Demo)"
    demo = True

    async def connect(self, bridge_id, credential):
        return None

    async def get_snapshot(self, bridge_id):
        return normalize_products(demo_data.hive_products())

    def is_connected(self, bridge_id):
        return True


class ConnectorCatalog:
    """Lookup table of connectors; registration order is snapshot order."""

    def __init__(self):
        self._table: Dict[Tuple[str, bool], ServiceConnector] = {}
        self._order: List[str] = []

    def register(self, connector: ServiceConnector):
        key = (connector.service_id, connector.demo)
        if key in self._table:
            raise ValueError(f"connector {key} is already registered")
        self._table[key] = connector
        if connector.service_id not in self._order:
            self._order.append(connector.service_id)
        log.debug("Registered connector %s (demo=%s)", connector.service_id, connector.demo)

    def get(self, service_id: str, demo: bool = False) -> Optional[ServiceConnector]:
        return self._table.get((service_id, demo))

    def all(self, demo: bool = False) -> List[ServiceConnector]:
        return [self._table[(sid, demo)] for sid in self._order if (sid, demo) in self._table]

    def metadata(self, demo: bool = False) -> List[Dict[str, Any]]:
        return [c.metadata() for c in self.all(demo)]

    def account_keys(self) -> Set[str]:
        """Credential-store keys owned by account-level services, never bridge ids."""
        return {c.account_key for c in self._table.values() if c.account_key}


def default_catalog(settings, credentials: CredentialStore, transport=None) -> ConnectorCatalog:
    hue = HueClient(timeout=settings.UPSTREAM_REQUEST_TIMEOUT, transport=transport)
    hive = HiveClient(settings.HIVE_API_URL, timeout=settings.UPSTREAM_REQUEST_TIMEOUT, transport=transport)
    catalog = ConnectorCatalog()
    for connector in (HueConnector(hue, credentials), HiveConnector(hive, credentials),
                      HueDemoConnector(), HiveDemoConnector()):
        catalog.register(connector)
    return catalog
