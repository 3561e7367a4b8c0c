import asyncio
import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///./test.db")
os.environ["LLM_PROVIDER"] = "mock"
os.environ.setdefault("LOG_FORMAT", "text")

import pytest

from mindfulbot import config, db
from mindfulbot.llm.provider import ProviderError
from mindfulbot.orchestrator import ChatPipeline
from mindfulbot.persistence import MemoryStatePersistence
from mindfulbot.session_store import SessionStore

TEST_DATABASE_URL = "sqlite+pysqlite:///./test.db"


@pytest.fixture(autouse=True, scope="session")
def _configure_test_db():
    if os.path.exists("./test.db"):
        os.remove("./test.db")
    config.settings.database_url = TEST_DATABASE_URL
    db.reset_engine(TEST_DATABASE_URL)
    db.init_db()
    yield


@pytest.fixture(autouse=True)
def _reset_app_state():
    """Drop the process-wide store/pipeline so each test starts fresh."""
    from mindfulbot import main

    main.reset_state()
    main.app.dependency_overrides.clear()
    yield
    main.reset_state()
    main.app.dependency_overrides.clear()


class RecordingProvider:
    """Completion provider double that records calls and replays canned replies."""

    name = "recording"

    def __init__(self, replies=None, error: Exception | None = None) -> None:
        self.replies = list(replies or ["I hear you. Here are some resources you may find helpful."])
        self.error = error
        self.calls: list[dict] = []

    async def generate_chat(self, messages, system_prompt=None, **kwargs):
        self.calls.append({"messages": list(messages), "system_prompt": system_prompt})
        if self.error is not None:
            raise self.error
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


@pytest.fixture()
def memory_persistence():
    return MemoryStatePersistence()


@pytest.fixture()
def store(memory_persistence):
    return SessionStore(memory_persistence)


@pytest.fixture()
def provider():
    return RecordingProvider()


@pytest.fixture()
def failing_provider():
    return RecordingProvider(error=ProviderError("sealion chat request failed."))


@pytest.fixture()
def pipeline(store, provider):
    return ChatPipeline(store, provider)


def run(coro):
    return asyncio.run(coro)
