"""In-memory storage for in-flight OAuth authorization state.

Each pending authorization is keyed by its CSRF ``state`` value and holds the
PKCE verifier needed to finish the flow. Entries live between 60 seconds and
30 minutes. Expired entries are never returned: ``get`` checks expiry on read,
and a background task sweeps stale entries every five minutes.

The map is guarded by a plain lock that is never held across an ``await``,
so the store is safe to use from concurrent tasks and threads. Callers only
ever receive frozen copies of the stored values.
"""

import asyncio
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_TTL = 900  # 15 minutes
MIN_TTL = 60
MAX_TTL = 1800  # 30 minutes
SWEEP_INTERVAL = 300  # 5 minutes


class CallbackMethod(str, Enum):
    """How the authorization code gets back to the client."""

    LOCAL_SERVER = "local_server"
    MANUAL = "manual"
    DEEP_LINK = "deep_link"
    DEVICE_FLOW = "device_flow"


@dataclass(frozen=True)
class FlowStateData:
    """Caller-supplied data for a pending authorization."""

    code_verifier: str = field(repr=False)
    scopes: tuple[str, ...]
    client_id: str
    callback_method: CallbackMethod = CallbackMethod.MANUAL
    organization: str | None = None
    callback_port: int | None = None


@dataclass(frozen=True)
class PendingFlowState(FlowStateData):
    """A stored pending authorization with its lifetime."""

    created_at: float = 0.0
    expires_at: float = 0.0

    def is_expired(self, now: float | None = None) -> bool:
        return (time.time() if now is None else now) > self.expires_at


@dataclass(frozen=True)
class StateStoreStats:
    """Diagnostic counts for the store."""

    total: int
    active: int
    expired: int
    oldest_created_at: float | None
    newest_created_at: float | None


def clamp_ttl(ttl: float | None) -> float:
    """Clamp a requested TTL (seconds) to the allowed range."""
    if ttl is None:
        return DEFAULT_TTL
    return max(MIN_TTL, min(MAX_TTL, ttl))


class StateStore:
    """TTL-bounded map of pending OAuth flows keyed by state.

    Usage:
        async with StateStore() as store:
            store.put(state, FlowStateData(...))
            pending = store.consume(state)
    """

    def __init__(self, sweep_interval: float = SWEEP_INTERVAL):
        """Initialize the store.

        Args:
            sweep_interval: Seconds between background sweeps
        """
        self.sweep_interval = sweep_interval
        self._entries: dict[str, PendingFlowState] = {}
        self._lock = threading.Lock()
        self._sweep_task: asyncio.Task | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def put(self, state: str, data: FlowStateData, ttl: float | None = None) -> PendingFlowState:
        """Store pending flow data, replacing any entry for the same state.

        Args:
            state: CSRF state value
            data: Flow data to keep until the callback arrives
            ttl: Lifetime in seconds, clamped to [60, 1800] (default 900)

        Returns:
            The stored entry
        """
        if not state:
            raise ValueError("state must be a non-empty string")

        now = time.time()
        fields = {name: value for name, value in asdict(data).items() if name not in ("created_at", "expires_at")}
        entry = PendingFlowState(**fields, created_at=now, expires_at=now + clamp_ttl(ttl))

        with self._lock:
            self._entries[state] = entry
        logger.debug(f"Stored OAuth state (expires in {entry.expires_at - now:.0f}s)")
        return entry

    def get(self, state: str) -> PendingFlowState | None:
        """Get pending flow data, or None if missing or expired.

        Expired entries found here are removed immediately.
        """
        with self._lock:
            entry = self._entries.get(state)
            if entry is None:
                return None
            if entry.is_expired(time.time()):
                del self._entries[state]
                logger.debug("Discarded expired OAuth state on read")
                return None
            return entry

    def consume(self, state: str) -> PendingFlowState | None:
        """Get and remove pending flow data in one step.

        Returns:
            The entry, or None if missing or expired
        """
        with self._lock:
            entry = self._entries.pop(state, None)
        if entry is None or entry.is_expired(time.time()):
            return None
        return entry

    def delete(self, state: str) -> None:
        """Remove an entry. Missing entries are ignored."""
        with self._lock:
            self._entries.pop(state, None)

    def sweep(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed
        """
        now = time.time()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired OAuth state entries")
        return len(expired)

    def stats(self) -> StateStoreStats:
        """Get diagnostic counts. Not intended for control flow."""
        now = time.time()
        with self._lock:
            entries = list(self._entries.values())

        expired = sum(1 for entry in entries if entry.is_expired(now))
        created = [entry.created_at for entry in entries]
        return StateStoreStats(
            total=len(entries),
            active=len(entries) - expired,
            expired=expired,
            oldest_created_at=min(created) if created else None,
            newest_created_at=max(created) if created else None,
        )

    def start(self) -> None:
        """Start the periodic sweep on the running event loop. Idempotent."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(
            self._sweep_loop(), name="oauth-state-sweep"
        )

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception:
                # Cleanup is advisory; get() still enforces expiry
                logger.exception("OAuth state sweep failed")

    def shutdown(self) -> None:
        """Stop the sweep and drop every entry. Safe to call more than once."""
        task, self._sweep_task = self._sweep_task, None
        if task is not None and not task.done():
            task.cancel()
        with self._lock:
            self._entries.clear()

    async def aclose(self) -> None:
        """Shut down and wait for the sweep task to finish cancelling."""
        task = self._sweep_task
        self.shutdown()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def __aenter__(self) -> "StateStore":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
