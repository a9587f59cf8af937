from pydantic import BaseModel, ConfigDict, Field
from google.protobuf.any_pb2 import Any as AnyMessage

class Snapshot(BaseModel):
    """
    The latest materialized state of one persistent entity.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    persistence_id: str = Field(min_length=1)
    state: AnyMessage
    version: int = Field(default=0, ge=0)
    timestamp: int = 0  # nanoseconds since epoch
    shard: int = Field(default=0, ge=0)


class Record(BaseModel):
    """
    Storage representation of a Snapshot: the state is kept as raw bytes
    plus the fully-qualified name of its message type.
    """
    persistence_id: str = Field(min_length=1)
    version: int = Field(default=0, ge=0)
    payload: bytes = b""
    manifest: str
    timestamp: int = 0
    shard: int = Field(default=0, ge=0)
