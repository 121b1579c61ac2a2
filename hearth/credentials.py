import asyncio, logging, os, tempfile
from pathlib import Path
from typing import Dict, Optional
import orjson
from .errors import PersistenceError

log = logging.getLogger("credentials")


class CredentialStore:
    """Long-lived per-bridge secrets, mirrored to a JSON file.

    The in-memory map is authoritative for the life of the process. Writes go
    to disk before ``store``/``clear`` return, but a failed write is only
    logged: durability is best effort.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._secrets: Dict[str, str] = {}
        self._write_lock = asyncio.Lock()

    def load(self) -> int:
        """Replace the in-memory map with the persisted file, if readable."""
        try:
            self._secrets = self._read()
        except PersistenceError as e:
            log.warning("Failed to load bridge credentials: %s", e)
            self._secrets = {}
        if self._secrets:
            log.info("Loaded credentials for %d bridge(s)", len(self._secrets))
        return len(self._secrets)

    def get(self, bridge_id: str) -> Optional[str]:
        return self._secrets.get(bridge_id)

    def has(self, bridge_id: str) -> bool:
        return bridge_id in self._secrets

    def bridges(self):
        return list(self._secrets)

    async def store(self, bridge_id: str, secret: str):
        self._secrets[bridge_id] = secret
        log.info("Stored credentials for bridge %s", bridge_id)
        await self._persist()

    async def clear(self, bridge_id: str) -> bool:
        existed = self._secrets.pop(bridge_id, None) is not None
        if existed:
            log.info("Cleared credentials for bridge %s", bridge_id)
            await self._persist()
        return existed

    async def _persist(self):
        async with self._write_lock:
            data = dict(self._secrets)
            try:
                await asyncio.to_thread(self._write, data)
            except PersistenceError as e:
                log.warning("Failed to save bridge credentials: %s", e)

    def _read(self) -> Dict[str, str]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            log.debug("No credentials file at %s, starting fresh", self.path)
            return {}
        except OSError as e:
            raise PersistenceError(f"cannot read {self.path}: {e}") from e
        if not raw.strip():
            return {}
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise PersistenceError(f"corrupt credentials file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"unexpected credentials layout in {self.path}")
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: Dict[str, str]):
        # temp file + rename so readers never observe a half-written file
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".credentials-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS))
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(tmp, 0o600)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"cannot write {self.path}: {e}") from e
