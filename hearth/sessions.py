import asyncio, dataclasses, logging, secrets, time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

log = logging.getLogger("session")

TOKEN_PREFIX = "hearth_sess_"


@dataclass
class Session:
    token: str
    bridge_id: str
    identity: str
    created_at: float
    last_used_at: float
    expires_in: float

    def expired(self, now: float) -> bool:
        return now >= self.created_at + self.expires_in


@dataclass(frozen=True)
class SessionView:
    bridge_id: str
    identity: str


def _short(token: str) -> str:
    return token[len(TOKEN_PREFIX):][:8] if token.startswith(TOKEN_PREFIX) else token[:8]


class SessionStore:
    """In-memory session table. Tokens are never persisted.

    Entries are evicted lazily on lookup and proactively by ``sweep``, which
    the background sweeper runs every ``sweep_interval`` seconds.
    """

    def __init__(self, expiry: float, sweep_interval: float,
                 clock: Callable[[], float] = time.time):
        self.expiry = expiry
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def create(self, bridge_id: str, identity: str,
               expires_in: Optional[float] = None) -> Session:
        token = TOKEN_PREFIX + secrets.token_hex(32)
        now = self._clock()
        session = Session(token=token, bridge_id=bridge_id, identity=identity,
                          created_at=now, last_used_at=now,
                          expires_in=self.expiry if expires_in is None else expires_in)
        self._sessions[token] = session
        log.info("Created session %s for bridge %s", _short(token), bridge_id)
        return dataclasses.replace(session)

    def lookup(self, token: str) -> Optional[SessionView]:
        session = self._sessions.get(token)
        if session is None:
            return None
        now = self._clock()
        if session.expired(now):
            del self._sessions[token]
            log.debug("Expired session %s", _short(token))
            return None
        session.last_used_at = now
        return SessionView(bridge_id=session.bridge_id, identity=session.identity)

    def revoke(self, token: str) -> bool:
        existed = self._sessions.pop(token, None) is not None
        if existed:
            log.info("Revoked session %s", _short(token))
        return existed

    def sweep(self) -> int:
        now = self._clock()
        stale = [t for t, s in self._sessions.items() if s.expired(now)]
        for token in stale:
            del self._sessions[token]
        if stale:
            log.debug("Swept %d expired sessions", len(stale))
        return len(stale)

    def stats(self) -> Dict[str, int]:
        now = self._clock()
        live = [s for s in self._sessions.values() if not s.expired(now)]
        ages = [int((now - s.created_at) * 1000) for s in live]
        return {
            "activeSessions": len(live),
            "oldestAgeMs": max(ages) if ages else 0,
            "newestAgeMs": min(ages) if ages else 0,
        }

    def __len__(self) -> int:
        return len(self._sessions)

    # background sweeper

    def start_sweeper(self):
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())
            log.info("Started session sweeper every %ss", self.sweep_interval)

    async def stop_sweeper(self):
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("Stopped session sweeper")

    async def _sweep_forever(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                log.warning("Session sweep failed: %s", e)
