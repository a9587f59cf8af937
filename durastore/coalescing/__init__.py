from typing import Any
from durastore.coalescing.base import Lifecycle, LifecycleState, WriteCoalescer
from durastore.coalescing.batch import BatchCoalescer, QueueFullPolicy
from durastore.coalescing.debounce import DebounceCoalescer
from durastore.gateway.interfaces import Gateway

STRATEGIES = {
    BatchCoalescer.strategy: BatchCoalescer,
    DebounceCoalescer.strategy: DebounceCoalescer,
}

def build_coalescer(strategy: str, gateway: Gateway, **options: Any) -> WriteCoalescer:
    """Instantiate a coalescer by strategy name ("batch" or "debounce")."""
    try:
        cls = STRATEGIES[strategy]
    except KeyError:
        raise ValueError(f"unknown coalescing strategy {strategy!r}, expected one of {sorted(STRATEGIES)}") from None
    return cls(gateway, **options)

__all__ = [
    "Lifecycle",
    "LifecycleState",
    "WriteCoalescer",
    "BatchCoalescer",
    "QueueFullPolicy",
    "DebounceCoalescer",
    "build_coalescer",
]
