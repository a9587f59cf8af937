"""
Checkpoints an account actor's balance many times per second and shows how
the batch coalescer turns that into one backend write per flush.

Run against SQLite or DynamoDB Local (create the table first with `durastore create-table`):
    DURASTORE_BACKEND=sqlite python examples/account_checkpoint.py
    DURASTORE_BACKEND=dynamodb DURASTORE_DYNAMODB_ENDPOINT=http://localhost:8000 python examples/account_checkpoint.py
"""
import asyncio
import logging
import time
from google.protobuf.any_pb2 import Any as AnyMessage
from google.protobuf.wrappers_pb2 import Int64Value

from durastore import DurableStateStore, Snapshot
from durastore.settings import Settings
from durastore.utils.logging import setup_logging, get_logger
from durastore.utils.metrics import MetricsManager

logger = get_logger("example")

def balance_snapshot(account: str, version: int, balance: int) -> Snapshot:
    state = AnyMessage()
    state.Pack(Int64Value(value=balance))
    return Snapshot(persistence_id=account, state=state, version=version, timestamp=time.time_ns())

async def main():
    setup_logging(logging.INFO)
    settings = Settings(FLUSH_INTERVAL_S=1.0)

    async with DurableStateStore.from_settings(settings) as store:
        balance = 0
        for version in range(1, 201):
            balance += 5
            await store.write_state(balance_snapshot("account_1", version, balance))
            await asyncio.sleep(0.01)

    # Reopen to read what survived
    async with DurableStateStore.from_settings(settings) as store:
        latest = await store.get_latest_state("account_1")
        value = Int64Value()
        latest.state.Unpack(value)
        logger.info(f"Recovered account_1 at version {latest.version} with balance {value.value}")

    for name, value in sorted(MetricsManager().get_all().items()):
        logger.info(f"{name} = {value}")

if __name__ == "__main__":
    asyncio.run(main())
