from typing import Literal, Optional
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    """
    Environment-driven configuration, read by DurableStateStore.from_settings
    and the CLI. Variables are prefixed with DURASTORE_.
    """
    BACKEND: Literal["dynamodb", "valkey", "sqlite", "memory"] = "dynamodb"

    # DynamoDB
    TABLE_NAME: str = "states_store"
    AWS_REGION: str = "us-east-1"
    DYNAMODB_ENDPOINT: Optional[str] = None
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[SecretStr] = None

    # Valkey
    VALKEY_HOST: str = "localhost"
    VALKEY_PORT: int = 6379
    VALKEY_PREFIX: str = "durastore:state"

    # SQLite
    SQLITE_PATH: str = "data/durastore.db"

    # Write coalescing
    COALESCER: Literal["batch", "debounce"] = "batch"
    FLUSH_INTERVAL_S: float = Field(default=5.0, gt=0)
    QUEUE_CAPACITY: int = Field(default=100, ge=1)
    QUEUE_FULL_POLICY: Literal["block", "drop_oldest"] = "block"
    ENQUEUE_TIMEOUT_S: float = Field(default=5.0, gt=0)
    DEBOUNCE_WINDOW_S: float = Field(default=10.0, ge=0)

    # Observability
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["text", "json"] = "text"
    OTEL_ENABLED: bool = False

    model_config = SettingsConfigDict(
        env_prefix="DURASTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
