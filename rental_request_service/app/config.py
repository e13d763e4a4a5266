# Application Configuration using Pydantic BaseSettings
from pydantic_settings import BaseSettings
from typing import Optional

class AppSettings(BaseSettings):
    # MongoDB
    MONGO_DETAILS: str = "mongodb://mongo:27017"
    DB_NAME: str = "rental_request_db"

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: Optional[str] = "kafka:29092"
    SYNC_KAFKA_TOPIC: str = "request_sync_events"

    # Observability
    LOG_LEVEL: str = "INFO"
    OTEL_EXPORTER_OTLP_TRACES_ENDPOINT: Optional[str] = None
    OTEL_EXPORTER_OTLP_METRICS_ENDPOINT: Optional[str] = None
    SERVICE_NAME_API: str = "rental-request-api"

    # Document generation service
    DOCUMENT_SERVICE_URL: Optional[str] = None # e.g., http://documents:8082/api/v1
    DEFAULT_HTTP_TIMEOUT: float = 10.0

    # Initial payment policy for purchase requests
    PURCHASE_DEPOSIT_RATE: float = 0.10
    PURCHASE_RENT_MONTHS_FALLBACK: int = 12
    PURCHASE_MINIMUM_INITIAL_PAYMENT: float = 1000.0

    # Lifecycle engine
    MAX_CONCURRENCY_RETRIES: int = 3
    DUPLICATE_REQUEST_WINDOW_HOURS: int = 24

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

# Instantiate settings to be imported by other modules
settings = AppSettings()

import logging
logger = logging.getLogger(__name__)
logger.info("Application settings module initialized.")
