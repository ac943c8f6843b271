"""
Pytest configuration and fixtures for the Polychat API.

This module provides:
- Test settings with isolated test environment
- A scripted stand-in for the chat-completion translation endpoint
- Translator, registry and fan-out fixtures wired to in-memory collaborators
- An HTTP test client running the full application lifespan
"""

import shutil
import tempfile
from dataclasses import replace
from typing import Generator
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from polychat.core.config import Settings
from polychat.services.messaging.fanout import MessageFanoutService
from polychat.services.messaging.store import InMemoryMessageStore
from polychat.services.realtime.broadcaster import ConnectionRegistry
from polychat.services.realtime.emitter import EventEmitter
from polychat.services.translation.cache import TranslationCache
from polychat.services.translation.translator import TranslatorClient
from tests.fakes import FakeCompletionEndpoint


@pytest.fixture(scope="session")
def test_data_dir() -> Generator[str, None, None]:
    """Create a temporary directory for test data.

    Yields:
        str: Path to the temporary test data directory
    """
    temp_dir = tempfile.mkdtemp(prefix="polychat_test_")
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture(scope="session")
def test_settings(test_data_dir: str) -> Settings:
    """Create test settings with isolated test environment.

    The durable cache tier is disabled here; tests that need it build their
    own SQLite store under ``tmp_path``.
    """
    return Settings(
        DEBUG=True,
        DATA_DIR=test_data_dir,
        ENVIRONMENT="testing",
        TRANSLATION_API_URL="https://translator.test/v1",
        TRANSLATION_API_KEY="test-api-key",
        TRANSLATION_TIMEOUT_SECONDS=5.0,
        TRANSLATION_CACHE_DB_ENABLED=False,
        REALTIME_HEARTBEAT_SECONDS=0.05,
        FANOUT_RECIPIENT_TIMEOUT_SECONDS=5.0,
    )


@pytest.fixture
def completion_endpoint() -> FakeCompletionEndpoint:
    return FakeCompletionEndpoint(
        {
            "Hello": "Hola",
            "Good morning": "Buenos días",
            "How are you?": "Wie geht es dir?",
        }
    )


@pytest.fixture
def retry_sleep() -> AsyncMock:
    """Awaitable stand-in for asyncio.sleep that records backoff delays."""
    return AsyncMock(return_value=None)


@pytest_asyncio.fixture
async def translator(
    test_settings: Settings,
    completion_endpoint: FakeCompletionEndpoint,
    retry_sleep: AsyncMock,
):
    """TranslatorClient talking to the fake endpoint with instant retries."""
    client = TranslatorClient(
        settings=test_settings,
        cache=TranslationCache(max_entries=100),
        transport=httpx.MockTransport(completion_endpoint),
    )
    client.retry_policy = replace(client.retry_policy, sleep=retry_sleep)
    yield client
    await client.close()


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def registry(emitter: EventEmitter) -> ConnectionRegistry:
    return ConnectionRegistry(emitter, queue_size=16)


@pytest.fixture
def message_store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture
def fanout_service(
    message_store: InMemoryMessageStore,
    translator: TranslatorClient,
    registry: ConnectionRegistry,
    emitter: EventEmitter,
    test_settings: Settings,
) -> MessageFanoutService:
    return MessageFanoutService(
        store=message_store,
        translator=translator,
        registry=registry,
        emitter=emitter,
        recipient_timeout=test_settings.FANOUT_RECIPIENT_TIMEOUT_SECONDS,
    )


@pytest.fixture
def test_client(
    test_settings: Settings, completion_endpoint: FakeCompletionEndpoint
) -> Generator[TestClient, None, None]:
    """Create a FastAPI test client with the application lifespan running.

    The translator built by the lifespan is swapped for one that talks to the
    fake completion endpoint.
    """
    # Import app here to avoid triggering Settings validation at module load time
    from polychat.core.config import get_settings
    from polychat.main import app

    app.dependency_overrides[get_settings] = lambda: test_settings
    with patch("polychat.main.get_settings", return_value=test_settings):
        with TestClient(app) as client:
            translator = TranslatorClient(
                settings=test_settings,
                cache=app.state.translation_cache,
                transport=httpx.MockTransport(completion_endpoint),
            )
            app.state.translator = translator
            app.state.fanout_service.translator = translator
            yield client
    app.dependency_overrides.clear()
