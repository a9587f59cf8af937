import asyncio
from typing import Any, Dict, Optional, Union, TYPE_CHECKING
from durastore.codec import RecordCodec
from durastore.coalescing import WriteCoalescer, build_coalescer
from durastore.gateway import DynamoGateway, Gateway, MemoryGateway, SQLiteGateway, ValkeyGateway
from durastore.gateway.dynamodb import dynamodb_client
from durastore.models import Snapshot
from durastore.utils.logging import get_logger
from durastore.validation import SnapshotValidator

if TYPE_CHECKING:
    from durastore.settings import Settings

logger = get_logger("DurableStateStore")

class DurableStateStore:
    """
    Persists the latest state snapshot per persistence ID.

    Writes go through a WriteCoalescer that bounds the backend write rate;
    reads go straight to the gateway.

    Attributes:
        gateway (Gateway): Backend holding one record per persistence ID.
        coalescer (WriteCoalescer): Decides when writes reach the gateway.
        codec (RecordCodec): Snapshot <-> Record conversion.
        validator (SnapshotValidator): Optional pre-write check, None by default.
    """
    def __init__(self,
                 gateway: Gateway,
                 coalescer: Union[str, WriteCoalescer] = "batch",
                 codec: Optional[RecordCodec] = None,
                 validator: Optional[SnapshotValidator] = None,
                 **coalescer_options: Any):
        """
        Initialize the store.

        Args:
            gateway (Gateway): The backend gateway.
            coalescer: A strategy name ("batch" or "debounce") or a ready instance
                bound to the same gateway.
            codec (RecordCodec): Defaults to the protobuf default descriptor pool.
            validator (SnapshotValidator): Optional version check hook.
            **coalescer_options: Passed to the coalescer when built by name.
        """
        self.gateway = gateway
        if isinstance(coalescer, str):
            coalescer = build_coalescer(coalescer, gateway, **coalescer_options)
        elif coalescer_options:
            raise TypeError("coalescer options are only accepted with a strategy name")
        self.coalescer = coalescer
        self.codec = codec or RecordCodec()
        self.validator = validator
        # Per-identifier locks held across validate, submit and accept, with user counts
        self._write_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @classmethod
    def from_settings(cls, settings: "Settings", client: Any = None) -> "DurableStateStore":
        """Build a store from configuration. `client` overrides the backend client."""
        gateway = build_gateway(settings, client)
        if settings.COALESCER == "batch":
            options = dict(
                flush_interval=settings.FLUSH_INTERVAL_S,
                capacity=settings.QUEUE_CAPACITY,
                full_policy=settings.QUEUE_FULL_POLICY,
                enqueue_timeout=settings.ENQUEUE_TIMEOUT_S,
            )
        else:
            options = dict(window=settings.DEBOUNCE_WINDOW_S)
        return cls(gateway, settings.COALESCER, **options)

    async def __aenter__(self) -> "DurableStateStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            await self.shutdown()
        finally:
            await self.disconnect()

    async def connect(self) -> None:
        await self.gateway.connect()
        await self.coalescer.start()
        logger.info(f"Connected ({type(self.gateway).__name__}, {self.coalescer.strategy} coalescing)")

    async def disconnect(self) -> None:
        try:
            await self.coalescer.close()
        finally:
            await self.gateway.close()
        logger.info("Disconnected")

    async def ping(self) -> None:
        await self.gateway.ping()

    async def write_state(self, snapshot: Snapshot) -> None:
        """
        Persist `snapshot` as the latest state of its persistence ID.

        The state is encoded before returning, so SerializationError is
        raised here. Depending on the coalescer the backend write is
        immediate (debounce) or deferred to the next flush (batch).
        """
        if self.validator is None:
            await self.coalescer.submit(self.codec.encode(snapshot))
            return

        persistence_id = snapshot.persistence_id
        lock = self._write_locks.get(persistence_id)
        if lock is None:
            lock = self._write_locks[persistence_id] = asyncio.Lock()
        self._lock_users[persistence_id] = self._lock_users.get(persistence_id, 0) + 1
        try:
            async with lock:
                self.validator.check(snapshot)
                await self.coalescer.submit(self.codec.encode(snapshot))
                self.validator.accept(snapshot)
        finally:
            self._lock_users[persistence_id] -= 1
            if not self._lock_users[persistence_id]:
                del self._lock_users[persistence_id]
                del self._write_locks[persistence_id]

    async def get_latest_state(self, persistence_id: str) -> Optional[Snapshot]:
        """Fetch the stored snapshot, or None if the identifier was never written."""
        record = await self.gateway.get(persistence_id)
        if record is None:
            return None
        return self.codec.decode(record)

    async def shutdown(self) -> None:
        """Flush buffered writes (batch) or disable debouncing (debounce). Idempotent."""
        await self.coalescer.shutdown()


def build_gateway(settings: "Settings", client: Any = None) -> Gateway:
    if settings.BACKEND == "dynamodb":
        if client is None:
            secret = settings.AWS_SECRET_ACCESS_KEY
            client = dynamodb_client(
                endpoint_url=settings.DYNAMODB_ENDPOINT,
                region_name=settings.AWS_REGION,
                access_key_id=settings.AWS_ACCESS_KEY_ID,
                secret_access_key=secret.get_secret_value() if secret else None,
            )
        return DynamoGateway(settings.TABLE_NAME, client)
    if settings.BACKEND == "valkey":
        return ValkeyGateway(host=settings.VALKEY_HOST, port=settings.VALKEY_PORT,
                             prefix=settings.VALKEY_PREFIX, client=client)
    if settings.BACKEND == "sqlite":
        return SQLiteGateway(settings.SQLITE_PATH, table_name=settings.TABLE_NAME)
    return MemoryGateway()
