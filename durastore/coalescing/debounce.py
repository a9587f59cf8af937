import time
from typing import Callable, Dict
from durastore.coalescing.base import LifecycleState, WriteCoalescer
from durastore.errors import DurableStoreError
from durastore.gateway.interfaces import Gateway
from durastore.models import Record
from durastore.utils.logging import get_logger

logger = get_logger("DebounceCoalescer")

class DebounceCoalescer(WriteCoalescer):
    """
    Writes synchronously, but at most once per `window` seconds per identifier.

    A write landing inside the window of the previous accepted write returns
    immediately and is NOT persisted. If it is the last write ever sent for
    that identifier it is lost; callers needing every final state durable
    should use BatchCoalescer.

    After shutdown() the window is disabled so the host can push final states
    through; close() rejects everything after that.
    """
    strategy = "debounce"

    def __init__(self, gateway: Gateway, window: float = 10.0, clock: Callable[[], float] = time.monotonic):
        super().__init__(gateway)
        self.window = window
        self.clock = clock
        self._last_sync: Dict[str, float] = {}
        self._last_sweep = clock()

    async def submit(self, record: Record) -> None:
        state = self.lifecycle.state
        if state is LifecycleState.CLOSED:
            self._reject(record)
        self.metrics.writes_submitted.inc()

        persistence_id = record.persistence_id
        now = self.clock()
        if now - self._last_sweep >= self.window:
            self._evict_expired(now)
        previous = self._last_sync.get(persistence_id)
        if state is LifecycleState.OPEN and previous is not None and now - previous < self.window:
            self.metrics.writes_suppressed.inc()
            logger.debug(f"Skipping write for {persistence_id}, last sync {now - previous:.2f}s ago",
                         extra={"persistence_id": persistence_id})
            return

        self._last_sync[persistence_id] = now
        try:
            await self.gateway.upsert(record)
        except DurableStoreError:
            # A failed write must not open a suppression window
            if self._last_sync.get(persistence_id) == now:
                if previous is None:
                    del self._last_sync[persistence_id]
                else:
                    self._last_sync[persistence_id] = previous
            raise
        self.metrics.backend_upserts.inc()

    def _evict_expired(self, now: float) -> None:
        """Forget identifiers whose last sync no longer suppresses anything."""
        self._last_sync = {pid: t for pid, t in self._last_sync.items() if now - t < self.window}
        self._last_sweep = now

    async def shutdown(self) -> None:
        if await self.lifecycle.transition(LifecycleState.OPEN, LifecycleState.DRAINING):
            logger.info("Shutting down, debounce disabled until close")

    async def close(self) -> None:
        await self.shutdown()
        if await self.lifecycle.transition(LifecycleState.DRAINING, LifecycleState.CLOSED):
            self._last_sync.clear()
            logger.info("Store closed")
