from __future__ import annotations

import asyncio
import copy
from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio

from hearth.errors import UpstreamUnreachableError
from hearth.gateway import BroadcastGateway
from hearth.polling import PollingCoordinator
from hearth.realtime import Broadcaster
from hearth.registry import SubscriptionRegistry
from hearth.sessions import SessionStore


def make_snapshot(**overrides: Any) -> dict[str, Any]:
    snapshot = {
        "summary": {"totalLights": 2, "lightsOn": 1, "roomCount": 1, "sceneCount": 0},
        "rooms": [
            {
                "id": "room-1",
                "name": "Lounge",
                "stats": {"total": 2, "on": 1, "averageBrightness": 80},
                "devices": [
                    {"id": "light-1", "name": "Lamp", "on": True, "brightness": 80},
                    {"id": "light-2", "name": "Shelf", "on": False, "brightness": 0},
                ],
                "scenes": [],
            }
        ],
        "zones": [],
        "motionZones": [],
        "services": {},
    }
    snapshot.update(overrides)
    return snapshot


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSource:
    """Snapshot source whose answers the test controls."""

    def __init__(self) -> None:
        self.snapshots: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []
        self.failures: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None

    def set(self, bridge_id: str, snapshot: dict[str, Any]) -> None:
        self.snapshots[bridge_id] = snapshot

    async def fetch(self, bridge_id: str) -> dict[str, Any]:
        self.calls.append(bridge_id)
        if self.gate is not None:
            await self.gate.wait()
        if bridge_id in self.failures:
            raise self.failures[bridge_id]
        if bridge_id not in self.snapshots:
            raise UpstreamUnreachableError(f"no such bridge {bridge_id}")
        return copy.deepcopy(self.snapshots[bridge_id])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source() -> FakeSource:
    src = FakeSource()
    src.set("X", make_snapshot())
    src.set("Y", make_snapshot(summary={"totalLights": 9}))
    return src


@pytest_asyncio.fixture
async def hub(source: FakeSource, clock: FakeClock):
    """Gateway wired to the fake source with polls driven by hand."""

    sessions = SessionStore(expiry=3600, sweep_interval=3600, clock=clock)
    registry = SubscriptionRegistry()
    broadcaster = Broadcaster(registry)
    coordinator = PollingCoordinator(
        source.fetch, broadcaster.publish_changes, interval=3600, timeout=1
    )
    gateway = BroadcastGateway(
        sessions, registry, coordinator, broadcaster,
        heartbeat_interval=30, heartbeat_timeout=90,
    )
    yield SimpleNamespace(
        sessions=sessions,
        registry=registry,
        broadcaster=broadcaster,
        coordinator=coordinator,
        gateway=gateway,
        source=source,
    )
    await gateway.stop()
    await coordinator.shutdown()
