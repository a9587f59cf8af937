from abc import ABC, abstractmethod
from typing import Optional
from durastore.models import Record

class Gateway(ABC):
    """
    Abstract interface over a key-value backend holding one Record per
    persistence ID.
    """

    async def connect(self) -> None:
        """Open backend resources. Stateless backends need nothing."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass

    async def ping(self) -> None:
        """Verify the backend is reachable. Raises BackendUnavailableError."""
        pass

    @abstractmethod
    async def upsert(self, record: Record) -> None:
        """Overwrite every attribute stored for record.persistence_id."""
        pass

    @abstractmethod
    async def get(self, persistence_id: str) -> Optional[Record]:
        """Fetch the stored record, or None when the identifier was never written."""
        pass
