"""
Conversion between Snapshot (typed protobuf state) and Record (bytes + manifest).

The manifest is the fully-qualified protobuf name of the serialized message,
resolved on read against the default descriptor pool. Any generated module
imported by the host registers its types there.
"""
from typing import Optional

from google.protobuf import descriptor_pool, message_factory
from google.protobuf.any_pb2 import Any as AnyMessage
from google.protobuf.message import DecodeError as ProtoDecodeError
from google.protobuf.message import EncodeError, Message

from durastore.errors import DecodeError, SerializationError, UnknownTypeError, UnpackError
from durastore.models import Record, Snapshot

class RecordCodec:
    """Encodes snapshots for storage and reconstructs them on read."""

    def __init__(self, pool: Optional[descriptor_pool.DescriptorPool] = None):
        self.pool = pool or descriptor_pool.Default()

    def encode(self, snapshot: Snapshot) -> Record:
        state = snapshot.state
        try:
            payload = state.SerializeToString()
            manifest = state.DESCRIPTOR.full_name
        except (EncodeError, AttributeError, TypeError) as e:
            raise SerializationError(
                f"failed to serialize state for persistence_id={snapshot.persistence_id}: {e}",
                persistence_id=snapshot.persistence_id,
                operation="encode",
            ) from e

        return Record(
            persistence_id=snapshot.persistence_id,
            version=snapshot.version,
            payload=payload,
            manifest=manifest,
            timestamp=snapshot.timestamp,
            shard=snapshot.shard,
        )

    def decode(self, record: Record) -> Snapshot:
        state = self.to_message(record.manifest, record.payload, persistence_id=record.persistence_id)
        return Snapshot(
            persistence_id=record.persistence_id,
            state=state,
            version=record.version,
            timestamp=record.timestamp,
            shard=record.shard,
        )

    def to_message(self, manifest: str, payload: bytes, persistence_id: Optional[str] = None) -> AnyMessage:
        """Parse `payload` as the type named by `manifest`; the result must be an Any."""
        try:
            descriptor = self.pool.FindMessageTypeByName(manifest)
        except KeyError as e:
            raise UnknownTypeError(
                f"unknown state manifest={manifest!r}",
                manifest=manifest, persistence_id=persistence_id, operation="decode",
            ) from e

        message: Message = message_factory.GetMessageClass(descriptor)()
        try:
            message.ParseFromString(payload)
        except ProtoDecodeError as e:
            raise DecodeError(
                f"failed to unmarshal state manifest={manifest!r}: {e}",
                manifest=manifest, persistence_id=persistence_id, operation="decode",
            ) from e

        if descriptor.full_name != AnyMessage.DESCRIPTOR.full_name:
            raise UnpackError(
                f"failed to unpack message={manifest}",
                manifest=manifest, persistence_id=persistence_id, operation="decode",
            )
        if not isinstance(message, AnyMessage):
            message = AnyMessage.FromString(message.SerializeToString())
        return message
