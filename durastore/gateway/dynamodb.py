"""
DynamoDB Table: durable states

Primary Key:
  - PersistenceID (S)   # partition key, one item per entity

Attributes:
  - VersionNumber (N)
  - StatePayload  (B)   # serialized state message
  - StateManifest (S)   # fully-qualified message type name
  - Timestamp     (N)   # nanoseconds since epoch
  - ShardNumber   (N)
"""
import asyncio
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from durastore.errors import BackendUnavailableError, MalformedRecordError
from durastore.gateway.interfaces import Gateway
from durastore.models import Record
from durastore.utils.logging import get_logger
from durastore.utils.tracing import get_tracer

logger = get_logger("DynamoGateway")
tracer = get_tracer("dynamodb")

PARTITION_KEY = "PersistenceID"

def dynamodb_client(endpoint_url: Optional[str] = None,
                    region_name: str = "us-east-1",
                    access_key_id: Optional[str] = None,
                    secret_access_key: Optional[str] = None) -> Any:
    """Low-level DynamoDB client. Credentials fall back to the boto3 default chain."""
    return boto3.client(
        "dynamodb",
        region_name=region_name,
        endpoint_url=endpoint_url,
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
    )

class DynamoGateway(Gateway):
    """
    Gateway over a DynamoDB table using the low-level boto3 client.
    The client is blocking, so each call runs in a worker thread.
    """
    def __init__(self, table_name: str, client: Any):
        self.table_name = table_name
        self.client = client

    async def upsert(self, record: Record) -> None:
        item = {
            PARTITION_KEY: {"S": record.persistence_id},
            "VersionNumber": {"N": str(record.version)},
            "StatePayload": {"B": record.payload},
            "StateManifest": {"S": record.manifest},
            "Timestamp": {"N": str(record.timestamp)},
            "ShardNumber": {"N": str(record.shard)},
        }
        with tracer.start_as_current_span("durastore.upsert", attributes={"durastore.persistence_id": record.persistence_id}):
            try:
                await asyncio.to_thread(self.client.put_item, TableName=self.table_name, Item=item)
            except (ClientError, BotoCoreError) as e:
                raise BackendUnavailableError(
                    f"failed to upsert state into the dynamodb: persistence_id={record.persistence_id}: {e}",
                    persistence_id=record.persistence_id,
                    operation="upsert",
                ) from e

    async def get(self, persistence_id: str) -> Optional[Record]:
        key = {PARTITION_KEY: {"S": persistence_id}}
        with tracer.start_as_current_span("durastore.get", attributes={"durastore.persistence_id": persistence_id}):
            try:
                result = await asyncio.to_thread(
                    self.client.get_item, TableName=self.table_name, Key=key, ConsistentRead=True
                )
            except (ClientError, BotoCoreError) as e:
                raise BackendUnavailableError(
                    f"failed to fetch the latest state from the dynamodb: persistence_id={persistence_id}: {e}",
                    persistence_id=persistence_id,
                    operation="get",
                ) from e

        item = result.get("Item")
        if not item:
            return None

        return Record(
            persistence_id=persistence_id,
            version=_number(item, "VersionNumber", persistence_id),
            payload=_attribute(item, "StatePayload", "B", persistence_id),
            manifest=_attribute(item, "StateManifest", "S", persistence_id),
            timestamp=_number(item, "Timestamp", persistence_id),
            shard=_number(item, "ShardNumber", persistence_id),
        )


def _attribute(item: Dict[str, Dict[str, Any]], name: str, type_code: str, persistence_id: str) -> Any:
    try:
        return item[name][type_code]
    except (KeyError, TypeError) as e:
        raise MalformedRecordError(
            f"stored item for persistence_id={persistence_id} has no {type_code} attribute {name}",
            persistence_id=persistence_id,
            operation="get",
        ) from e


def _number(item: Dict[str, Dict[str, Any]], name: str, persistence_id: str) -> int:
    raw = _attribute(item, name, "N", persistence_id)
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise MalformedRecordError(
            f"stored attribute {name}={raw!r} for persistence_id={persistence_id} is not an integer",
            persistence_id=persistence_id,
            operation="get",
        ) from e
