"""
Helpers for running against DynamoDB Local (amazon/dynamodb-local).
"""
import copy
from typing import Any, Dict
from botocore.exceptions import ClientError
from durastore.gateway.dynamodb import PARTITION_KEY, dynamodb_client
from durastore.utils.logging import get_logger

logger = get_logger("testkit")

def local_client(endpoint_url: str, region_name: str = "us-east-1") -> Any:
    """Client for DynamoDB Local, which accepts any static credentials."""
    return dynamodb_client(
        endpoint_url=endpoint_url,
        region_name=region_name,
        access_key_id="fakekey",
        secret_access_key="fakesecret",
    )

def create_table(client: Any, table_name: str, exist_ok: bool = False) -> None:
    """Create the states table: hash key PersistenceID (S), on-demand billing."""
    try:
        client.create_table(
            TableName=table_name,
            AttributeDefinitions=[{"AttributeName": PARTITION_KEY, "AttributeType": "S"}],
            KeySchema=[{"AttributeName": PARTITION_KEY, "KeyType": "HASH"}],
            BillingMode="PAY_PER_REQUEST",
        )
    except ClientError as e:
        if exist_ok and e.response.get("Error", {}).get("Code") == "ResourceInUseException":
            logger.info(f"Table {table_name} already exists")
            return
        raise
    client.get_waiter("table_exists").wait(TableName=table_name)
    logger.info(f"Created table {table_name}")

def delete_table(client: Any, table_name: str) -> None:
    client.delete_table(TableName=table_name)
    client.get_waiter("table_not_exists").wait(TableName=table_name)

class InMemoryDynamoClient:
    """
    Dict-backed stand-in for the low-level DynamoDB client, covering the
    put_item/get_item calls DynamoGateway makes.
    """
    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.put_calls = 0

    def put_item(self, TableName: str, Item: Dict[str, Any], **kwargs: Any) -> Dict[str, Any]:
        self.put_calls += 1
        key = Item[PARTITION_KEY]["S"]
        self.tables.setdefault(TableName, {})[key] = copy.deepcopy(Item)
        return {}

    def get_item(self, TableName: str, Key: Dict[str, Any], **kwargs: Any) -> Dict[str, Any]:
        item = self.tables.get(TableName, {}).get(Key[PARTITION_KEY]["S"])
        return {"Item": copy.deepcopy(item)} if item else {}
