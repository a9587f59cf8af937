from durastore.store import DurableStateStore
from durastore.models import Snapshot, Record
from durastore.codec import RecordCodec
from durastore.coalescing import BatchCoalescer, DebounceCoalescer, QueueFullPolicy
from durastore.validation import MonotonicVersionValidator

__version__ = "0.1.0"

__all__ = [
    "DurableStateStore",
    "Snapshot",
    "Record",
    "RecordCodec",
    "BatchCoalescer",
    "DebounceCoalescer",
    "QueueFullPolicy",
    "MonotonicVersionValidator",
]
