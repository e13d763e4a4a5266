# FastAPI Application Entry Point
import logging
from fastapi import FastAPI
import httpx

# Configuration and Observability
from rental_request_service.app.config import settings
from rental_request_service.app.observability import setup_opentelemetry, logger

# Initialize OpenTelemetry
setup_opentelemetry(service_name=settings.SERVICE_NAME_API)

# Import instrumentors after OTel SDK is initialized
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.pymongo import PymongoInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from rental_request_service.infrastructure.database import connection
from rental_request_service.infrastructure.kafka.producer import startup_kafka_producer, shutdown_kafka_producer
from rental_request_service.app.dependencies.lifecycle import build_sync_engine

# API Routers
from rental_request_service.app.api.v1.endpoints import health as health_router
from rental_request_service.app.api.v1.endpoints import requests as requests_router
from rental_request_service.app.api.v1.endpoints import stats as stats_router

# --- FastAPI Application Instance ---
app = FastAPI(
    title="Rental Request Service",
    description="Rental and purchase request lifecycle with read-model synchronization.",
    version="0.1.0"
)

@app.on_event("startup")
async def startup_event():
    logger.info("FastAPI application startup...")
    try:
        app.state.http_client = httpx.AsyncClient(timeout=settings.DEFAULT_HTTP_TIMEOUT)
        HTTPXClientInstrumentor().instrument()
        logger.info(f"HTTPX AsyncClient initialized with timeout {settings.DEFAULT_HTTP_TIMEOUT} and instrumented.")

        await connection.connect_to_mongo()
        await connection.ensure_indexes(connection.db)
        logger.info("MongoDB connection established.")

        PymongoInstrumentor().instrument()
        logger.info("PyMongo instrumentation complete.")

        await startup_kafka_producer()
        app.state.sync_engine = build_sync_engine(connection.db)
        logger.info("Sync engine ready.")
    except Exception as e:
        logger.error(f"Failed during startup: {e}", exc_info=True)

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("FastAPI application shutdown...")

    sync_engine = getattr(app.state, "sync_engine", None)
    if sync_engine:
        await sync_engine.drain()
        logger.info("Pending synchronizations drained.")

    if hasattr(app.state, 'http_client') and app.state.http_client:
        await app.state.http_client.aclose()
        logger.info("HTTPX AsyncClient closed.")

    await shutdown_kafka_producer()

    connection.close_mongo_connection()

FastAPIInstrumentor.instrument_app(app)
logger.info("FastAPI instrumentation complete.")

app.include_router(health_router.router)
app.include_router(requests_router.router, prefix="/api/v1", tags=["Requests"])
app.include_router(stats_router.router, prefix="/api/v1", tags=["Read Models"])

logger.info("API routers included. Application setup complete.")

# To run: uvicorn rental_request_service.app.main:app --reload --port 8000
