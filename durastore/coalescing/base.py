import asyncio
import enum
from abc import ABC, abstractmethod
from durastore.errors import ClosedError
from durastore.gateway.interfaces import Gateway
from durastore.models import Record
from durastore.utils.metrics import StoreMetrics

class LifecycleState(enum.Enum):
    OPEN = "open"
    DRAINING = "draining"
    CLOSED = "closed"


class Lifecycle:
    """
    OPEN -> DRAINING -> CLOSED. Transitions only move forward and are
    serialized by a lock so concurrent shutdowns agree on who drains.
    """

    def __init__(self) -> None:
        self._state = LifecycleState.OPEN
        self._lock = asyncio.Lock()

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is LifecycleState.OPEN

    async def transition(self, expected: LifecycleState, target: LifecycleState) -> bool:
        """Move to `target` if currently `expected`. Returns False if another caller got there first."""
        async with self._lock:
            if self._state is not expected:
                return False
            self._state = target
            return True


class WriteCoalescer(ABC):
    """
    Decides when an encoded record actually reaches the gateway.
    """
    strategy: str = "abstract"

    def __init__(self, gateway: Gateway):
        self.gateway = gateway
        self.lifecycle = Lifecycle()
        self.metrics = StoreMetrics(self.strategy)

    async def start(self) -> None:
        """Start background work, if any."""
        pass

    @abstractmethod
    async def submit(self, record: Record) -> None:
        """Accept a record for writing. Raises ClosedError once shut down."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Stop accepting deferred work and make pending writes durable. Idempotent."""
        pass

    async def close(self) -> None:
        """Final transition to CLOSED. Defaults to shutdown()."""
        await self.shutdown()

    def _reject(self, record: Record) -> None:
        raise ClosedError(
            f"store is {self.lifecycle.state.value}; write rejected for persistence_id={record.persistence_id}",
            persistence_id=record.persistence_id,
            operation="write_state",
        )
