import asyncio, logging
from typing import Any, Optional
from .connectors import HUE, ConnectorCatalog, ServiceConnector
from .demo import DEMO_BRIDGE_ID
from .errors import HearthError, ValidationError
from .models import Snapshot

log = logging.getLogger("state")


class SnapshotAggregator:
    """Builds the full snapshot for a bridge from every connected service.

    The primary service supplies summary, rooms, zones and motion zones; any
    other connected service lands under ``services`` keyed by its id. Each
    secondary service is fetched alongside the primary with its own time
    limit, and one that fails or overruns is left out of that snapshot
    rather than failing the whole fetch.
    """

    def __init__(self, catalog: ConnectorCatalog, primary: str = HUE,
                 service_timeout: float = 5):
        self.catalog = catalog
        self.primary = primary
        self.service_timeout = service_timeout

    @staticmethod
    def is_demo(bridge_id: str) -> bool:
        return bridge_id == DEMO_BRIDGE_ID

    async def fetch_snapshot(self, bridge_id: str) -> Snapshot:
        demo = self.is_demo(bridge_id)
        primary = self.catalog.get(self.primary, demo)
        if primary is None:
            raise ValidationError(f"No {self.primary} connector registered (demo={demo})")

        secondaries = [c for c in self.catalog.all(demo)
                       if c.service_id != self.primary and c.is_connected(bridge_id)]
        pending = [asyncio.ensure_future(self._service_state(c, bridge_id)) for c in secondaries]
        try:
            snapshot = dict(await primary.get_snapshot(bridge_id))
            states = await asyncio.gather(*pending)
        finally:
            for task in pending:
                task.cancel()

        snapshot["services"] = {c.service_id: state for c, state in zip(secondaries, states)
                                if state is not None}
        return snapshot

    async def _service_state(self, connector: ServiceConnector, bridge_id: str) -> Optional[Any]:
        service = connector.service_id
        try:
            return await asyncio.wait_for(connector.get_snapshot(bridge_id), self.service_timeout)
        except asyncio.TimeoutError:
            log.warning("Skipping %s for %s: no answer within %ss", service, bridge_id,
                        self.service_timeout)
        except HearthError as e:
            log.warning("Skipping %s for %s: %s", service, bridge_id, e)
        except Exception:
            log.exception("Skipping %s for %s after an unexpected error", service, bridge_id)
        return None

    async def validate(self, bridge_id: str, credential: str):
        """Check a bridge credential against the primary service."""
        connector = self.catalog.get(self.primary, self.is_demo(bridge_id))
        if connector is None:
            raise ValidationError(f"No {self.primary} connector registered")
        await connector.connect(bridge_id, credential)

    def account_connector(self, service_id: str) -> ServiceConnector:
        connector = self.catalog.get(service_id)
        if connector is None or connector.account_key is None:
            raise ValidationError(f"Service {service_id} does not take an account credential")
        return connector

    async def connect_account(self, service_id: str, credential: str) -> str:
        """Validate an account-level credential; return the key to store it under."""
        connector = self.account_connector(service_id)
        await connector.connect(connector.account_key, credential)
        return connector.account_key
