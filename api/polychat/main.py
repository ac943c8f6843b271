"""
FastAPI application for the Polychat messaging backend.
This module wires the translation, realtime and messaging services together
and sets up routes, middleware, metrics and error handling.
"""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from prometheus_fastapi_instrumentator import Instrumentator
from prometheus_fastapi_instrumentator import metrics as instrumentator_metrics

from polychat.core.config import get_settings
from polychat.core.error_handlers import (
    base_exception_handler,
    translation_input_handler,
    unhandled_exception_handler,
)
from polychat.core.exceptions import BaseAppException
from polychat.routes import conversations, health, messages, realtime, translate
from polychat.services.messaging.fanout import MessageFanoutService
from polychat.services.messaging.store import InMemoryMessageStore
from polychat.services.realtime.broadcaster import ConnectionRegistry
from polychat.services.realtime.emitter import EventEmitter
from polychat.services.translation.cache import (
    SQLiteTranslationStore,
    TranslationCache,
)
from polychat.services.translation.errors import InvalidTranslationInput
from polychat.services.translation.language_detector import LanguageDetector
from polychat.services.translation.translator import TranslatorClient

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger("polychat.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Application startup...")

    settings = get_settings()
    app.state.settings = settings

    # Create data directories (avoid import-time I/O)
    settings.ensure_data_dirs()

    durable_store = None
    if settings.TRANSLATION_CACHE_DB_ENABLED:
        logger.info(
            f"Opening durable translation cache at {settings.TRANSLATION_CACHE_DB_PATH}"
        )
        durable_store = SQLiteTranslationStore(settings.TRANSLATION_CACHE_DB_PATH)

    logger.info("Initializing TranslationCache...")
    cache = TranslationCache(
        max_entries=settings.TRANSLATION_CACHE_MAX_ENTRIES,
        max_age_seconds=settings.TRANSLATION_CACHE_MAX_AGE_SECONDS,
        durable_store=durable_store,
    )
    cache.start_sweeper(settings.TRANSLATION_CACHE_SWEEP_SECONDS)

    logger.info("Initializing TranslatorClient...")
    translator = TranslatorClient(
        settings=settings, cache=cache, detector=LanguageDetector()
    )

    logger.info("Initializing ConnectionRegistry...")
    emitter = EventEmitter()
    registry = ConnectionRegistry(emitter, queue_size=settings.REALTIME_QUEUE_SIZE)

    logger.info("Initializing MessageFanoutService...")
    store = InMemoryMessageStore()
    fanout_service = MessageFanoutService(
        store=store,
        translator=translator,
        registry=registry,
        emitter=emitter,
        recipient_timeout=settings.FANOUT_RECIPIENT_TIMEOUT_SECONDS,
        min_confidence=settings.FANOUT_MIN_CONFIDENCE,
    )

    # Assign services to app state
    app.state.translation_cache = cache
    app.state.translator = translator
    app.state.event_emitter = emitter
    app.state.connection_registry = registry
    app.state.message_store = store
    app.state.fanout_service = fanout_service

    # Yield control to the application
    yield

    # Shutdown
    logger.info("Application shutdown...")
    registry.close_all()
    await cache.stop()
    await translator.close()


# Create FastAPI application
app = FastAPI(
    title=get_settings().PROJECT_NAME,
    docs_url="/api/docs",
    openapi_url=f"{get_settings().API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

# Configure CORS
# Toggle credentials off when wildcard is used (Starlette forbids wildcard + credentials)
_origins = get_settings().CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=False if _origins == ["*"] else True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Set up Prometheus metrics
# DON'T call .expose() - /metrics is served below from the default REGISTRY
instrumentator = Instrumentator(
    should_group_status_codes=False,
    should_ignore_untemplated=True,
    should_respect_env_var=False,  # Always enable metrics
    should_instrument_requests_inprogress=True,
    # Long-lived streams would skew latency histograms
    excluded_handlers=["/health", "/metrics", ".*/realtime$"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.add(instrumentator_metrics.default())
instrumentator.add(
    instrumentator_metrics.latency(buckets=(0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60))
)
instrumentator.instrument(app)
logger.info("Prometheus metrics instrumentation initialized")


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint (translation, realtime and HTTP metrics)."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Include routers
_api_prefix = get_settings().API_V1_STR
app.include_router(health.router, tags=["Health"])
app.include_router(messages.router, prefix=_api_prefix, tags=["Messages"])
app.include_router(conversations.router, prefix=_api_prefix, tags=["Conversations"])
app.include_router(translate.router, prefix=_api_prefix, tags=["Translation"])
app.include_router(realtime.router, prefix=_api_prefix, tags=["Realtime"])


# Register exception handlers
# Register specific application exceptions first
app.add_exception_handler(BaseAppException, base_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(InvalidTranslationInput, translation_input_handler)  # type: ignore[arg-type]
# Then register generic exception handler as fallback
app.add_exception_handler(Exception, unhandled_exception_handler)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    # Bind to 0.0.0.0 only in DEBUG mode (container/development)
    # Otherwise bind to 127.0.0.1 for local security
    host = "0.0.0.0" if settings.DEBUG else "127.0.0.1"

    uvicorn.run(
        "polychat.main:app",
        host=host,
        port=8000,
        reload=settings.DEBUG,
    )
