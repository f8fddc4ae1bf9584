import os

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["APP_TIMEZONE"] = "UTC"
os.environ["LLM_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
import pytz  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from notekeeper.auth import AuthGate  # noqa: E402
from notekeeper.main import create_app  # noqa: E402
from notekeeper.service import NoteService  # noqa: E402
from notekeeper.store import MemoryStore, SqlStore  # noqa: E402


class TickingClock:
    """Returns a strictly increasing time, one second per call."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=pytz.UTC)
        self.step = step

    def __call__(self):
        value = self.current
        self.current = self.current + self.step
        return value


class FakeSummarizer:
    def __init__(self, result="Short summary", error=None):
        self.result = result
        self.error = error
        self.calls = []

    def summarize(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture(params=["memory", "sql"])
def store(request, clock):
    if request.param == "memory":
        return MemoryStore(clock=clock)
    return SqlStore.from_url("sqlite://", clock=clock)


@pytest.fixture
def memory_store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def gate(memory_store):
    return AuthGate(memory_store, secret_key="test-secret", expire_hours=24)


@pytest.fixture
def summarizer():
    return FakeSummarizer()


@pytest.fixture
def users(store):
    alice = store.create_user(name="Alice", email="alice@example.com", password="secret1")
    bob = store.create_user(name="Bob", email="bob@example.com", password="secret2")
    return alice, bob


@pytest.fixture
def service(store, summarizer):
    return NoteService(store, summarizer=summarizer)


@pytest.fixture
def client():
    app = create_app(store=MemoryStore())
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def summary_client(summarizer):
    app = create_app(store=MemoryStore(), summarizer=summarizer)
    with TestClient(app) as test_client:
        yield test_client
