from durastore.gateway.interfaces import Gateway
from durastore.gateway.memory import MemoryGateway
from durastore.gateway.dynamodb import DynamoGateway
from durastore.gateway.valkey import ValkeyGateway
from durastore.gateway.sqlite import SQLiteGateway

__all__ = ["Gateway", "MemoryGateway", "DynamoGateway", "ValkeyGateway", "SQLiteGateway"]
