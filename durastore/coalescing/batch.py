import asyncio
import enum
from typing import Dict, List, Optional
from durastore.coalescing.base import LifecycleState, WriteCoalescer
from durastore.errors import FlushError, QueueFullError
from durastore.gateway.interfaces import Gateway
from durastore.models import Record
from durastore.utils.logging import get_logger

logger = get_logger("BatchCoalescer")

class QueueFullPolicy(str, enum.Enum):
    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"


class BatchCoalescer(WriteCoalescer):
    """
    Buffers writes in a bounded queue and flushes them periodically.

    Each flush cycle drains the queue into a last-write-wins map keyed by
    persistence ID and issues one upsert per surviving identifier, so the
    backend sees at most one write per identifier per cycle.

    Durability: shutdown() drains and flushes everything still queued. A crash
    before shutdown loses at most one flush interval of buffered writes. A
    cycle interrupted by cancellation keeps its unwritten records for the next
    cycle; a failed upsert is reported once and dropped.

    Full queue:
    - BLOCK: submit() waits up to `enqueue_timeout` seconds for room, then
      raises QueueFullError.
    - DROP_OLDEST: the oldest queued record is evicted and counted in
      durastore_dropped_writes_total.
    """
    strategy = "batch"

    def __init__(self,
                 gateway: Gateway,
                 flush_interval: float = 5.0,
                 capacity: int = 100,
                 full_policy: QueueFullPolicy = QueueFullPolicy.BLOCK,
                 enqueue_timeout: Optional[float] = 5.0):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if flush_interval <= 0:
            raise ValueError("flush_interval must be positive")
        super().__init__(gateway)
        self.flush_interval = flush_interval
        self.capacity = capacity
        self.full_policy = QueueFullPolicy(full_policy)
        self.enqueue_timeout = enqueue_timeout
        self.last_flush_error: Optional[Exception] = None

        self._queue: "asyncio.Queue[Record]" = asyncio.Queue(maxsize=capacity)
        self._stop = asyncio.Event()
        self._shutdown_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._inflight: Dict[str, Record] = {}

    @property
    def pending(self) -> int:
        return self._queue.qsize() + len(self._inflight)

    async def start(self) -> None:
        if self._task is None and self.lifecycle.is_open:
            self._task = asyncio.create_task(self._flush_loop(), name="durastore-flush")
            logger.info(f"Started flush loop (interval={self.flush_interval}s, capacity={self.capacity})")

    async def submit(self, record: Record) -> None:
        if not self.lifecycle.is_open:
            self._reject(record)
        await self.start()

        if self.full_policy is QueueFullPolicy.DROP_OLDEST:
            self._put_dropping_oldest(record)
        else:
            try:
                await asyncio.wait_for(self._queue.put(record), timeout=self.enqueue_timeout)
            except asyncio.TimeoutError:
                raise QueueFullError(
                    f"write queue full for {self.enqueue_timeout}s; rejected persistence_id={record.persistence_id}",
                    persistence_id=record.persistence_id,
                    operation="write_state",
                ) from None
            # Room appeared only after the final drain completed
            if self.lifecycle.state is LifecycleState.CLOSED:
                self._reject(record)

        self.metrics.writes_submitted.inc()
        self.metrics.pending_writes.set(self.pending)

    def _put_dropping_oldest(self, record: Record) -> None:
        while True:
            try:
                self._queue.put_nowait(record)
                return
            except asyncio.QueueFull:
                pass
            try:
                dropped = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                continue
            self.metrics.dropped_writes.inc()
            logger.warning(
                f"Write queue full, dropped oldest write for {dropped.persistence_id} (version {dropped.version})",
                extra={"persistence_id": dropped.persistence_id},
            )

    async def flush(self) -> List[str]:
        """
        Run one flush cycle. Returns the identifiers whose upsert failed;
        failures are logged and counted, not retried.
        """
        async with self._flush_lock:
            self._drain()
            return await self._write_inflight()

    def _drain(self) -> Dict[str, Record]:
        # Non-blocking: records enqueued after this returns wait for the next cycle.
        # Survivors of an interrupted cycle are still in _inflight and get merged first.
        batch = self._inflight
        while True:
            try:
                record = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if record.persistence_id in batch:
                self.metrics.writes_coalesced.inc()
            batch[record.persistence_id] = record
        self.metrics.pending_writes.set(self.pending)
        return batch

    async def _write_inflight(self) -> List[str]:
        # An entry leaves _inflight only once its upsert has finished, so a
        # cancelled cycle leaves the unwritten records for the next one
        batch = self._inflight
        total = len(batch)
        failed: List[str] = []
        while batch:
            persistence_id, record = next(iter(batch.items()))
            try:
                await self.gateway.upsert(record)
            except Exception as e:
                failed.append(persistence_id)
                self.last_flush_error = e
                self.metrics.flush_failures.inc()
                logger.error(f"Flush failed for {persistence_id}: {e!r}", extra={"persistence_id": persistence_id})
            else:
                self.metrics.backend_upserts.inc()
            del batch[persistence_id]
            self.metrics.pending_writes.set(self.pending)

        if total:
            logger.debug(f"Flushed {total - len(failed)}/{total} states")
        return failed

    async def _flush_loop(self) -> None:
        while self.lifecycle.is_open:
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.flush_interval)
            except asyncio.TimeoutError:
                try:
                    await self.flush()
                except Exception as e:
                    logger.exception(f"Unexpected error in flush loop: {e}")

    async def shutdown(self) -> None:
        """
        Drain and flush everything buffered, then move to CLOSED.

        Safe to call again after an interrupted attempt: the store stays
        DRAINING and the next call resumes the drain.
        """
        async with self._shutdown_lock:
            if self.lifecycle.state is LifecycleState.CLOSED:
                return
            if await self.lifecycle.transition(LifecycleState.OPEN, LifecycleState.DRAINING):
                logger.info(f"Shutting down, draining {self.pending} pending writes")
            else:
                logger.info(f"Resuming interrupted shutdown, {self.pending} pending writes")
            self._stop.set()

            task = self._task
            if task is not None and not task.done():
                await task

            failed: List[str] = []
            while True:
                async with self._flush_lock:
                    if not self._drain():
                        await self.lifecycle.transition(LifecycleState.DRAINING, LifecycleState.CLOSED)
                        break
                    failed.extend(await self._write_inflight())

        logger.info("Write queue drained, store closed")
        if failed:
            failed = list(dict.fromkeys(failed))
            raise FlushError(
                f"failed to persist {len(failed)} states on shutdown: {', '.join(failed)}",
                failed=failed,
                operation="shutdown",
            )
