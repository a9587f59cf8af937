import asyncio
from typing import Dict, List, Optional
from durastore.gateway.interfaces import Gateway
from durastore.models import Record
from durastore.utils.logging import get_logger

logger = get_logger("MemoryGateway")

class MemoryGateway(Gateway):
    """
    In-memory gateway for testing/local verification.
    Not persistent across restarts. Records every upsert in `upserts`.
    """
    def __init__(self) -> None:
        self._items: Dict[str, Record] = {}
        self.upserts: List[Record] = []
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        logger.info("Connected to MemoryGateway")

    async def close(self) -> None:
        logger.info("Closed MemoryGateway")

    async def upsert(self, record: Record) -> None:
        async with self._lock:
            self._items[record.persistence_id] = record.model_copy()
            self.upserts.append(record)

    async def get(self, persistence_id: str) -> Optional[Record]:
        async with self._lock:
            record = self._items.get(persistence_id)
            return record.model_copy() if record else None

    def upsert_count(self, persistence_id: str) -> int:
        return sum(1 for r in self.upserts if r.persistence_id == persistence_id)
