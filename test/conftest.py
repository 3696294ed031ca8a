import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from storage.event_store import EventStore
from storage.local_cache import LocalEventCache
from storage.remote_backend import InMemoryEventBackend
from syllabus_sync.config import ImportConfig, StoreConfig
from syllabus_sync.errors import ErrorCategory, RemoteBackendError
from syllabus_sync.models import EventItem, ParseResult


class FakeExtractor:
    def __init__(self, text: str = "", exc: Optional[Exception] = None, delay: float = 0.0):
        self.text = text
        self.exc = exc
        self.delay = delay
        self.documents = []

    async def extract(self, document) -> str:
        self.documents.append(document)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        return self.text


class FakeParser:
    """Returns queued outcomes in order; the last one repeats.

    An outcome is a ParseResult, an exception to raise, or "hang".
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: List[str] = []
        self.called = asyncio.Event()

    async def parse(self, text: str, request_id: Optional[str] = None) -> ParseResult:
        self.calls.append(text)
        self.called.set()
        idx = min(len(self.calls) - 1, len(self.outcomes) - 1)
        outcome = self.outcomes[idx]
        if outcome == "hang":
            await asyncio.sleep(3600)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        pass


class FlakyBackend(InMemoryEventBackend):
    def __init__(self):
        super().__init__()
        self.fail_upsert = False
        self.fail_delete = False
        self.fail_fetch = False
        self.upsert_delay = 0.0
        self.upsert_calls = 0
        self.delete_calls = 0

    async def fetch_all(self, user_id):
        if self.fail_fetch:
            raise RemoteBackendError("fetch down", ErrorCategory.NETWORK)
        return await super().fetch_all(user_id)

    async def upsert(self, user_id, events):
        self.upsert_calls += 1
        if self.upsert_delay:
            await asyncio.sleep(self.upsert_delay)
        if self.fail_upsert:
            raise RemoteBackendError("upsert down", ErrorCategory.NETWORK)
        await super().upsert(user_id, events)

    async def delete(self, user_id, event_id):
        self.delete_calls += 1
        if self.fail_delete:
            raise RemoteBackendError("delete down", ErrorCategory.NETWORK)
        await super().delete(user_id, event_id)

    async def delete_all(self, user_id):
        self.delete_calls += 1
        if self.fail_delete:
            raise RemoteBackendError("delete down", ErrorCategory.NETWORK)
        await super().delete_all(user_id)


class UserBox:
    def __init__(self, user_id: Optional[str] = "alice"):
        self.user_id = user_id

    def __call__(self) -> Optional[str]:
        return self.user_id


BASE_START = datetime(2025, 9, 2, 10, 30, tzinfo=timezone.utc)


def make_event(title: str, days: int = 0, **kwargs) -> EventItem:
    data = {"title": title, "start": BASE_START + timedelta(days=days)}
    data.update(kwargs)
    return EventItem(**data)


@pytest.fixture
def backend():
    return FlakyBackend()


@pytest.fixture
def user():
    return UserBox("alice")


@pytest.fixture
def store_factory(backend, user):
    def _make(cache_path=None, remote_timeout_s: float = 1.0, store_backend=None):
        return EventStore(
            store_backend or backend,
            cache=LocalEventCache(path=cache_path),
            current_user=user,
            config=StoreConfig(remote_timeout_s=remote_timeout_s, cache_path=cache_path),
        )
    return _make


@pytest.fixture
def import_config():
    return ImportConfig(
        allowed_content_types=("application/pdf", "text/plain"),
        max_document_bytes=1024 * 1024,
        parse_timeout_s=2.0,
        progress_tick_s=0.01,
    )
