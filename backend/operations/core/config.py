from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Operations"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/api/v1"

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DB_NAME: str = "operations"

    # Tenancy
    DEFAULT_TENANT_ID: str = "00000000-0000-0000-0000-000000000000"

    # Name used when locking events and interactions for processing
    INSTANCE_NAME: str = "operations-1"

    # Background processing
    ENABLE_BACKGROUND_PROCESSING: bool = True
    EVENT_PROCESSING_INTERVAL_SECONDS: float = 5.0
    INTERACTION_PROCESSING_INTERVAL_SECONDS: float = 10.0
    MAXIMUM_EVENT_PROCESSING_ATTEMPTS: int = 10
    MAXIMUM_INTERACTION_PROCESSING_ATTEMPTS: int = 10
    PROCESSING_RETRY_DELAY_SECONDS: int = 60

    # Mailbox interaction sources
    ENABLE_MAILBOX_SYNCHRONIZATION: bool = True
    MAILBOX_SYNCHRONIZATION_INTERVAL_SECONDS: float = 60.0
    MAILBOX_CONNECTION_TIMEOUT_SECONDS: float = 30.0

    # Document Storage
    MAX_DOCUMENT_SIZE_MB: int = 50

    # Logging
    LOG_LEVEL: str = "INFO"
    GRAYLOG_HOST: Optional[str] = None
    GRAYLOG_PORT: int = 12201

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
