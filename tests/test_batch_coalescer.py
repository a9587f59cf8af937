import asyncio
import unittest
from durastore.coalescing import BatchCoalescer, LifecycleState, QueueFullPolicy
from durastore.errors import BackendUnavailableError, ClosedError, FlushError, QueueFullError
from durastore.gateway.memory import MemoryGateway
from durastore.models import Record
from durastore.utils.metrics import MetricsManager

def record(persistence_id: str, version: int) -> Record:
    return Record(persistence_id=persistence_id, version=version, payload=bytes([version % 256]),
                  manifest="google.protobuf.Any", timestamp=version)

class FailingGateway(MemoryGateway):
    """Rejects upserts for the given identifiers."""
    def __init__(self, failing):
        super().__init__()
        self.failing = set(failing)

    async def upsert(self, record: Record) -> None:
        if record.persistence_id in self.failing:
            raise BackendUnavailableError("backend down", persistence_id=record.persistence_id, operation="upsert")
        await super().upsert(record)

class BuggyGateway(MemoryGateway):
    """Raises a non-store error for the given identifiers."""
    def __init__(self, failing):
        super().__init__()
        self.failing = set(failing)

    async def upsert(self, record: Record) -> None:
        if record.persistence_id in self.failing:
            raise RuntimeError(f"unexpected failure for {record.persistence_id}")
        await super().upsert(record)

class SlowGateway(MemoryGateway):
    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def upsert(self, record: Record) -> None:
        await asyncio.sleep(self.delay)
        await super().upsert(record)

class GatedGateway(MemoryGateway):
    """Holds every upsert until `release` is set."""
    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def upsert(self, record: Record) -> None:
        self.entered.set()
        await self.release.wait()
        await super().upsert(record)


class TestBatchCoalescer(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.gateway = MemoryGateway()
        # Long interval: cycles are driven by the test through flush()
        self.coalescer = BatchCoalescer(self.gateway, flush_interval=60.0)

    async def asyncTearDown(self):
        if self.coalescer.lifecycle.state is not LifecycleState.CLOSED:
            try:
                await self.coalescer.shutdown()
            except FlushError:
                pass

    async def test_last_write_wins_with_one_backend_call(self):
        metrics = MetricsManager()
        coalesced_before = metrics.value("durastore_writes_coalesced_total", {"strategy": "batch"})

        for version in range(1, 6):
            await self.coalescer.submit(record("account_1", version))
        self.assertEqual(self.gateway.upsert_count("account_1"), 0)

        failed = await self.coalescer.flush()

        self.assertEqual(failed, [])
        self.assertEqual(self.gateway.upsert_count("account_1"), 1)
        self.assertEqual((await self.gateway.get("account_1")).version, 5)
        self.assertEqual(self.coalescer.pending, 0)
        coalesced_after = metrics.value("durastore_writes_coalesced_total", {"strategy": "batch"})
        self.assertEqual(coalesced_after - coalesced_before, 4)

    async def test_each_identifier_flushed_independently(self):
        await self.coalescer.submit(record("a", 1))
        await self.coalescer.submit(record("b", 1))
        await self.coalescer.submit(record("a", 2))

        await self.coalescer.flush()

        self.assertEqual([r.persistence_id for r in self.gateway.upserts], ["a", "b"])
        self.assertEqual((await self.gateway.get("a")).version, 2)
        self.assertEqual((await self.gateway.get("b")).version, 1)

    async def test_shutdown_drains_everything(self):
        ids = [f"entity-{i}" for i in range(10)]
        for version in (1, 2):
            for persistence_id in ids:
                await self.coalescer.submit(record(persistence_id, version))

        await self.coalescer.shutdown()

        self.assertEqual(self.coalescer.pending, 0)
        self.assertIs(self.coalescer.lifecycle.state, LifecycleState.CLOSED)
        for persistence_id in ids:
            self.assertEqual((await self.gateway.get(persistence_id)).version, 2)
            self.assertEqual(self.gateway.upsert_count(persistence_id), 1)

    async def test_shutdown_is_idempotent_and_concurrent_safe(self):
        await self.coalescer.submit(record("a", 1))

        await asyncio.gather(self.coalescer.shutdown(), self.coalescer.shutdown())
        await self.coalescer.shutdown()

        self.assertEqual(self.gateway.upsert_count("a"), 1)

    async def test_writes_rejected_after_shutdown(self):
        await self.coalescer.shutdown()
        with self.assertRaises(ClosedError):
            await self.coalescer.submit(record("a", 1))

    async def test_background_cycle_flushes(self):
        coalescer = BatchCoalescer(self.gateway, flush_interval=0.05)
        await coalescer.submit(record("a", 1))
        await coalescer.submit(record("a", 2))

        for _ in range(40):
            if self.gateway.upserts:
                break
            await asyncio.sleep(0.05)

        self.assertEqual((await self.gateway.get("a")).version, 2)
        self.assertEqual(self.gateway.upsert_count("a"), 1)
        await coalescer.shutdown()

    async def test_shutdown_interrupts_sleeping_flush_loop(self):
        await self.coalescer.start()
        await self.coalescer.submit(record("a", 1))

        # 60s interval: returning promptly means the sleep was cancelled
        await asyncio.wait_for(self.coalescer.shutdown(), timeout=2.0)
        self.assertEqual(self.gateway.upsert_count("a"), 1)

    async def test_block_policy_times_out(self):
        coalescer = BatchCoalescer(self.gateway, flush_interval=60.0, capacity=2, enqueue_timeout=0.05)
        await coalescer.submit(record("a", 1))
        await coalescer.submit(record("b", 1))

        with self.assertRaises(QueueFullError) as ctx:
            await coalescer.submit(record("c", 1))
        self.assertEqual(ctx.exception.persistence_id, "c")

        await coalescer.shutdown()
        self.assertIsNone(await self.gateway.get("c"))
        self.assertIsNotNone(await self.gateway.get("b"))

    async def test_block_policy_resumes_when_room_appears(self):
        coalescer = BatchCoalescer(self.gateway, flush_interval=60.0, capacity=1, enqueue_timeout=2.0)
        await coalescer.submit(record("a", 1))

        blocked = asyncio.create_task(coalescer.submit(record("b", 1)))
        await asyncio.sleep(0.05)
        self.assertFalse(blocked.done())

        await coalescer.flush()
        await blocked
        await coalescer.shutdown()

        self.assertEqual(self.gateway.upsert_count("b"), 1)

    async def test_drop_oldest_policy(self):
        metrics = MetricsManager()
        dropped_before = metrics.value("durastore_dropped_writes_total", {"strategy": "batch"})
        coalescer = BatchCoalescer(self.gateway, flush_interval=60.0, capacity=2,
                                   full_policy=QueueFullPolicy.DROP_OLDEST)

        await coalescer.submit(record("a", 1))
        await coalescer.submit(record("b", 1))
        await coalescer.submit(record("c", 1))

        self.assertEqual(coalescer.pending, 2)
        await coalescer.shutdown()

        self.assertIsNone(await self.gateway.get("a"))
        self.assertIsNotNone(await self.gateway.get("c"))
        dropped_after = metrics.value("durastore_dropped_writes_total", {"strategy": "batch"})
        self.assertEqual(dropped_after - dropped_before, 1)

    async def test_flush_failures_are_reported_not_retried(self):
        gateway = FailingGateway(failing={"bad"})
        coalescer = BatchCoalescer(gateway, flush_interval=60.0)
        await coalescer.submit(record("bad", 1))
        await coalescer.submit(record("good", 1))

        failed = await coalescer.flush()

        self.assertEqual(failed, ["bad"])
        self.assertIsInstance(coalescer.last_flush_error, BackendUnavailableError)
        self.assertIsNotNone(await gateway.get("good"))

        # Not carried over to the next cycle
        self.assertEqual(await coalescer.flush(), [])
        await coalescer.shutdown()

    async def test_shutdown_reports_failed_identifiers(self):
        gateway = FailingGateway(failing={"bad"})
        coalescer = BatchCoalescer(gateway, flush_interval=60.0)
        await coalescer.submit(record("bad", 1))
        await coalescer.submit(record("good", 1))

        with self.assertRaises(FlushError) as ctx:
            await coalescer.shutdown()

        self.assertEqual(ctx.exception.failed, ["bad"])
        self.assertIsNotNone(await gateway.get("good"))
        self.assertIs(coalescer.lifecycle.state, LifecycleState.CLOSED)

    async def test_concurrent_writers(self):
        async def writer(persistence_id: str):
            for version in range(1, 21):
                await self.coalescer.submit(record(persistence_id, version))

        await asyncio.gather(*(writer(f"w{i}") for i in range(4)))
        await self.coalescer.shutdown()

        for i in range(4):
            self.assertEqual((await self.gateway.get(f"w{i}")).version, 20)

    async def test_cancelled_shutdown_can_be_retried(self):
        gateway = SlowGateway(delay=0.2)
        coalescer = BatchCoalescer(gateway, flush_interval=60.0)
        for persistence_id in ("a", "b", "c"):
            await coalescer.submit(record(persistence_id, 1))

        with self.assertRaises(asyncio.TimeoutError):
            await asyncio.wait_for(coalescer.shutdown(), timeout=0.1)

        self.assertIs(coalescer.lifecycle.state, LifecycleState.DRAINING)
        self.assertEqual(coalescer.pending, 3)
        with self.assertRaises(ClosedError):
            await coalescer.submit(record("d", 1))

        await coalescer.shutdown()

        self.assertIs(coalescer.lifecycle.state, LifecycleState.CLOSED)
        self.assertEqual(coalescer.pending, 0)
        for persistence_id in ("a", "b", "c"):
            self.assertIsNotNone(await gateway.get(persistence_id))

    async def test_unexpected_gateway_error_on_shutdown(self):
        gateway = BuggyGateway(failing={"a"})
        coalescer = BatchCoalescer(gateway, flush_interval=60.0)
        await coalescer.submit(record("a", 1))
        await coalescer.submit(record("b", 1))

        with self.assertRaises(FlushError) as ctx:
            await coalescer.shutdown()

        self.assertEqual(ctx.exception.failed, ["a"])
        self.assertIsInstance(coalescer.last_flush_error, RuntimeError)
        self.assertIsNotNone(await gateway.get("b"))
        self.assertIs(coalescer.lifecycle.state, LifecycleState.CLOSED)

    async def test_cancelled_flush_keeps_unwritten_records(self):
        gateway = SlowGateway(delay=0.2)
        coalescer = BatchCoalescer(gateway, flush_interval=60.0)
        await coalescer.submit(record("a", 1))
        await coalescer.submit(record("b", 1))

        with self.assertRaises(asyncio.TimeoutError):
            await asyncio.wait_for(coalescer.flush(), timeout=0.1)
        self.assertEqual(coalescer.pending, 2)

        # A newer queued write for a survivor replaces it
        await coalescer.submit(record("b", 2))
        self.assertEqual(await coalescer.flush(), [])

        self.assertEqual(coalescer.pending, 0)
        self.assertEqual((await gateway.get("a")).version, 1)
        self.assertEqual((await gateway.get("b")).version, 2)
        self.assertEqual(gateway.upsert_count("b"), 1)
        await coalescer.shutdown()

    async def test_unexpected_gateway_error_on_flush(self):
        gateway = BuggyGateway(failing={"a"})
        coalescer = BatchCoalescer(gateway, flush_interval=60.0)
        await coalescer.submit(record("a", 1))
        await coalescer.submit(record("b", 1))

        self.assertEqual(await coalescer.flush(), ["a"])

        self.assertIsNotNone(await gateway.get("b"))
        self.assertEqual(coalescer.pending, 0)
        await coalescer.shutdown()

    async def test_write_arriving_during_flush_waits_for_next_cycle(self):
        gateway = GatedGateway()
        coalescer = BatchCoalescer(gateway, flush_interval=60.0)
        await coalescer.submit(record("a", 1))

        cycle = asyncio.create_task(coalescer.flush())
        await gateway.entered.wait()
        await coalescer.submit(record("b", 1))
        gateway.release.set()
        await cycle

        self.assertIsNotNone(await gateway.get("a"))
        self.assertIsNone(await gateway.get("b"))
        self.assertEqual(coalescer.pending, 1)

        await coalescer.flush()
        self.assertEqual((await gateway.get("b")).version, 1)
        self.assertEqual(coalescer.pending, 0)
        await coalescer.shutdown()

    def test_rejects_invalid_configuration(self):
        with self.assertRaises(ValueError):
            BatchCoalescer(MemoryGateway(), capacity=0)
        with self.assertRaises(ValueError):
            BatchCoalescer(MemoryGateway(), flush_interval=0)

if __name__ == '__main__':
    unittest.main()
