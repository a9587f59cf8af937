import valkey.asyncio as valkey
from valkey.exceptions import ValkeyError
from typing import Dict, Optional
from durastore.errors import BackendUnavailableError, MalformedRecordError
from durastore.gateway.interfaces import Gateway
from durastore.models import Record
from durastore.utils.logging import get_logger
from durastore.utils.tracing import get_tracer

logger = get_logger("ValkeyGateway")
tracer = get_tracer("valkey")

class ValkeyGateway(Gateway):
    """
    Gateway backed by Valkey.
    Structure: HASH {prefix}:{persistence_id} -> {version, payload, manifest, timestamp, shard}
    """
    def __init__(self, host: str = 'localhost', port: int = 6379, prefix: str = 'durastore:state',
                 client: Optional[valkey.Valkey] = None):
        # Binary-safe: payloads are raw protobuf bytes
        self.client = client or valkey.Valkey(host=host, port=port, decode_responses=False)
        self.prefix = prefix

    def _key(self, persistence_id: str) -> str:
        return f"{self.prefix}:{persistence_id}"

    async def ping(self) -> None:
        try:
            await self.client.ping()
        except ValkeyError as e:
            raise BackendUnavailableError(f"valkey ping failed: {e}", operation="ping") from e

    async def close(self) -> None:
        await self.client.aclose()

    async def upsert(self, record: Record) -> None:
        mapping = {
            "version": str(record.version),
            "payload": record.payload,
            "manifest": record.manifest,
            "timestamp": str(record.timestamp),
            "shard": str(record.shard),
        }
        key = self._key(record.persistence_id)
        with tracer.start_as_current_span("durastore.upsert", attributes={"durastore.persistence_id": record.persistence_id}):
            try:
                # A single HSET replaces every field, so the overwrite is atomic
                await self.client.hset(key, mapping=mapping)
            except ValkeyError as e:
                raise BackendUnavailableError(
                    f"failed to upsert state into valkey: persistence_id={record.persistence_id}: {e}",
                    persistence_id=record.persistence_id,
                    operation="upsert",
                ) from e

    async def get(self, persistence_id: str) -> Optional[Record]:
        with tracer.start_as_current_span("durastore.get", attributes={"durastore.persistence_id": persistence_id}):
            try:
                fields = await self.client.hgetall(self._key(persistence_id))
            except ValkeyError as e:
                raise BackendUnavailableError(
                    f"failed to fetch the latest state from valkey: persistence_id={persistence_id}: {e}",
                    persistence_id=persistence_id,
                    operation="get",
                ) from e

        if not fields:
            return None

        return _to_record(persistence_id, fields)


def _to_record(persistence_id: str, fields: Dict[bytes, bytes]) -> Record:
    def field(name: str) -> bytes:
        value = fields.get(name.encode())
        if value is None:
            raise MalformedRecordError(
                f"stored hash for persistence_id={persistence_id} has no field {name}",
                persistence_id=persistence_id, operation="get",
            )
        return value

    def number(name: str) -> int:
        raw = field(name)
        try:
            return int(raw)
        except ValueError as e:
            raise MalformedRecordError(
                f"stored field {name}={raw!r} for persistence_id={persistence_id} is not an integer",
                persistence_id=persistence_id, operation="get",
            ) from e

    return Record(
        persistence_id=persistence_id,
        version=number("version"),
        payload=field("payload"),
        manifest=field("manifest").decode("utf-8"),
        timestamp=number("timestamp"),
        shard=number("shard"),
    )
