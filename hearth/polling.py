"""One shared polling loop per bridge with at least one subscriber.

Lifecycle per bridge is STOPPED -> RUNNING -> STOPPED. ``start`` and ``stop``
never suspend, so they can be paired with the registry's first/last
subscriber answers without another coroutine interleaving.

While RUNNING a single task fetches a snapshot, diffs it against the cached
previous one and publishes non-empty deltas, then sleeps for the interval.
Polls made by one task are therefore sequential. The first poll of a
run only seeds the cache: new subscribers get the full state through
``initial_state`` instead of a burst of deltas.

``stop`` cancels the task only while it sleeps. A fetch already in flight is
allowed to finish and its result is dropped, because the poller is no longer
the registered one for its bridge. After a quick stop and start that old
fetch can overlap the new task's first fetch for the same bridge; only the
new task's results reach the cache and subscribers.
"""
import asyncio, logging, time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional
from .diff import diff
from .errors import HearthError, UpstreamTimeoutError
from .models import Delta, Snapshot

log = logging.getLogger("polling")

Fetch = Callable[[str], Awaitable[Snapshot]]
Publish = Callable[[str, List[Delta]], None]


@dataclass(eq=False)
class PollingTask:
    bridge_id: str
    task: Optional[asyncio.Task] = None
    last_snapshot: Optional[Snapshot] = None
    stopped: bool = False
    sleeping: bool = False
    polls: int = 0
    failures: int = 0
    last_poll_at: Optional[float] = None
    first_poll: asyncio.Event = field(default_factory=asyncio.Event)


class PollingCoordinator:
    def __init__(self, fetch: Fetch, publish: Publish, interval: float, timeout: float,
                 differ=diff):
        self._fetch = fetch
        self._publish = publish
        self._diff = differ
        self.interval = interval
        self.timeout = timeout
        self._pollers: Dict[str, PollingTask] = {}

    def start(self, bridge_id: str) -> bool:
        if bridge_id in self._pollers:
            return False
        poller = PollingTask(bridge_id=bridge_id)
        self._pollers[bridge_id] = poller
        poller.task = asyncio.create_task(self._run(poller), name=f"poll:{bridge_id}")
        log.info("Starting polling for %s every %ss", bridge_id, self.interval)
        return True

    def stop(self, bridge_id: str) -> bool:
        poller = self._pollers.pop(bridge_id, None)
        if poller is None:
            return False
        poller.stopped = True
        poller.last_snapshot = None
        if poller.sleeping and poller.task is not None:
            poller.task.cancel()
        poller.first_poll.set()
        log.info("Stopped polling for %s", bridge_id)
        return True

    def is_running(self, bridge_id: str) -> bool:
        return bridge_id in self._pollers

    def running(self) -> List[str]:
        return list(self._pollers)

    def task_for(self, bridge_id: str) -> Optional[PollingTask]:
        return self._pollers.get(bridge_id)

    def cached(self, bridge_id: str) -> Optional[Snapshot]:
        poller = self._pollers.get(bridge_id)
        return poller.last_snapshot if poller else None

    async def latest_snapshot(self, bridge_id: str) -> Optional[Snapshot]:
        """Cached snapshot for a running bridge, waiting out its first poll."""
        poller = self._pollers.get(bridge_id)
        if poller is None:
            return None
        if poller.last_snapshot is None and not poller.first_poll.is_set():
            await poller.first_poll.wait()
        if self._pollers.get(bridge_id) is not poller:
            return None
        return poller.last_snapshot

    async def fetch(self, bridge_id: str) -> Snapshot:
        """Fetch a snapshot with the fixed upper bound applied."""
        try:
            return await asyncio.wait_for(self._fetch(bridge_id), self.timeout)
        except asyncio.TimeoutError:
            raise UpstreamTimeoutError(
                f"Snapshot fetch for {bridge_id} exceeded {self.timeout}s") from None

    async def shutdown(self):
        pollers = list(self._pollers.values())
        self._pollers.clear()
        for poller in pollers:
            poller.stopped = True
            poller.first_poll.set()
            if poller.task is not None:
                poller.task.cancel()
        await asyncio.gather(*(p.task for p in pollers if p.task is not None),
                             return_exceptions=True)

    def stats(self) -> Dict[str, dict]:
        return {
            bridge_id: {
                "polls": p.polls,
                "failures": p.failures,
                "hasSnapshot": p.last_snapshot is not None,
                "lastPollAt": p.last_poll_at,
            }
            for bridge_id, p in self._pollers.items()
        }

    async def _run(self, poller: PollingTask):
        initial = True
        try:
            while not poller.stopped:
                await self.poll(poller, initial=initial)
                initial = False
                poller.first_poll.set()
                if poller.stopped:
                    break
                poller.sleeping = True
                try:
                    await asyncio.sleep(self.interval)
                finally:
                    poller.sleeping = False
        finally:
            poller.first_poll.set()

    async def poll(self, poller: PollingTask, initial: bool = False) -> List[Delta]:
        """Run one poll cycle; failures are logged and leave the cache untouched."""
        bridge_id = poller.bridge_id
        try:
            snapshot = await self.fetch(bridge_id)
        except HearthError as e:
            poller.failures += 1
            log.warning("Poll for %s failed (%s): %s", bridge_id, e.code, e)
            return []
        except Exception:
            poller.failures += 1
            log.exception("Unexpected error polling %s", bridge_id)
            return []

        if poller.stopped or self._pollers.get(bridge_id) is not poller:
            log.debug("Discarding poll result for stopped bridge %s", bridge_id)
            return []

        deltas = self._diff(poller.last_snapshot, snapshot)
        poller.last_snapshot = snapshot
        poller.polls += 1
        poller.last_poll_at = time.time()

        if deltas and not initial:
            log.debug("Publishing %d change(s) for %s", len(deltas), bridge_id)
            try:
                self._publish(bridge_id, deltas)
            except Exception:
                log.exception("Failed to publish changes for %s", bridge_id)
        return deltas
