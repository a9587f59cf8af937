"""Exception hierarchy for durastore."""

from typing import Optional, Sequence


class DurableStoreError(Exception):
    """Base exception for all durastore errors."""

    def __init__(self, message: str, *, persistence_id: Optional[str] = None, operation: str = ""):
        self.persistence_id = persistence_id
        self.operation = operation
        super().__init__(message)


class BackendUnavailableError(DurableStoreError):
    """The backing store rejected or could not serve a request."""


class MalformedRecordError(DurableStoreError):
    """A stored record is missing an attribute or holds an unparseable value."""


class SerializationError(DurableStoreError):
    """The state payload could not be encoded. Nothing was written."""


class StateDecodeError(DurableStoreError):
    """A stored payload could not be reconstructed into a state message."""

    def __init__(self, message: str, *, manifest: str = "", **kwargs):
        self.manifest = manifest
        super().__init__(message, **kwargs)


class UnknownTypeError(StateDecodeError):
    """The manifest names a message type that is not registered."""


class DecodeError(StateDecodeError):
    """The payload bytes are not a valid encoding of the manifest type."""


class UnpackError(StateDecodeError):
    """The decoded message is not a google.protobuf.Any."""


class ClosedError(DurableStoreError):
    """A write was attempted after shutdown."""


class QueueFullError(DurableStoreError):
    """The write queue stayed full for longer than the enqueue timeout."""


class VersionConflictError(DurableStoreError):
    """A snapshot was rejected by the version validator."""


class FlushError(DurableStoreError):
    """One or more buffered snapshots could not be written during a final drain."""

    def __init__(self, message: str, *, failed: Sequence[str] = (), **kwargs):
        self.failed = list(failed)
        super().__init__(message, **kwargs)
