import aiosqlite
import os
import sqlite3
from typing import Optional
from durastore.errors import BackendUnavailableError
from durastore.gateway.interfaces import Gateway
from durastore.models import Record
from durastore.utils.logging import get_logger

logger = get_logger("SQLiteGateway")

class SQLiteGateway(Gateway):
    """
    Persistent gateway using SQLite, one row per persistence ID.
    """
    def __init__(self, path: str, table_name: str = "durable_states"):
        self.path = path
        self.table_name = table_name
        self._db: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        if self._db:
            return
        # Ensure directory exists
        dirname = os.path.dirname(self.path)
        if dirname and not os.path.exists(dirname):
            os.makedirs(dirname)

        self._db = await aiosqlite.connect(self.path)
        await self._db.execute(
            f"CREATE TABLE IF NOT EXISTS {self.table_name} ("
            "persistence_id TEXT PRIMARY KEY, "
            "version_number INTEGER NOT NULL, "
            "state_payload BLOB NOT NULL, "
            "state_manifest TEXT NOT NULL, "
            "timestamp INTEGER NOT NULL, "
            "shard_number INTEGER NOT NULL)"
        )
        await self._db.commit()
        logger.info(f"Opened SQLite gateway at {self.path}")

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def ping(self) -> None:
        self._require("ping")

    def _require(self, operation: str, persistence_id: Optional[str] = None) -> aiosqlite.Connection:
        if not self._db:
            raise BackendUnavailableError("SQLite gateway not connected", persistence_id=persistence_id, operation=operation)
        return self._db

    async def upsert(self, record: Record) -> None:
        db = self._require("upsert", record.persistence_id)
        try:
            await db.execute(
                f"INSERT OR REPLACE INTO {self.table_name} "
                "(persistence_id, version_number, state_payload, state_manifest, timestamp, shard_number) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (record.persistence_id, record.version, record.payload, record.manifest,
                 record.timestamp, record.shard),
            )
            await db.commit()
        except sqlite3.Error as e:
            raise BackendUnavailableError(
                f"failed to upsert state into sqlite: persistence_id={record.persistence_id}: {e}",
                persistence_id=record.persistence_id,
                operation="upsert",
            ) from e

    async def get(self, persistence_id: str) -> Optional[Record]:
        db = self._require("get", persistence_id)
        try:
            async with db.execute(
                f"SELECT version_number, state_payload, state_manifest, timestamp, shard_number "
                f"FROM {self.table_name} WHERE persistence_id = ?",
                (persistence_id,),
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise BackendUnavailableError(
                f"failed to fetch the latest state from sqlite: persistence_id={persistence_id}: {e}",
                persistence_id=persistence_id,
                operation="get",
            ) from e

        if row is None:
            return None

        version, payload, manifest, timestamp, shard = row
        return Record(
            persistence_id=persistence_id,
            version=version,
            payload=bytes(payload),
            manifest=manifest,
            timestamp=timestamp,
            shard=shard,
        )
