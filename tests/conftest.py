"""Shared fixtures for the hookvault test suite.

The app runs against the in-memory store and task queue; outbound
resource fetches go to an httpx.MockTransport, and task deliveries go
back into the app through the TestClient.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from hookvault.config import Settings
from hookvault.integrity import sign
from hookvault.models import ArchiveRecord, EventRecord
from hookvault.serve import create_app
from hookvault.store.memory import MemoryArchiveStore
from hookvault.streams import Packer
from hookvault.tasks.dispatcher import InMemoryTaskQueue
from hookvault.tasks.runner import TaskRunner

APP_KEY = "test-app-key"
ADMIN_TOKEN = "test-admin-token"


class FakeResourceServer:
    """Answers outbound fetches from a table of href -> (status, body)."""

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, bytes]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, href: str, body: bytes | dict, status: int = 200) -> None:
        if isinstance(body, dict):
            body = json.dumps(body).encode("utf-8")
        self.routes[href] = (status, body)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.routes.get(str(request.url), (404, b"not found"))
        return httpx.Response(status, content=body)


def make_event(resource: str = "invoices", id=42, href: str | None = None) -> EventRecord:
    return EventRecord(
        event_type="created",
        resource=resource,
        created="2024-05-01T10:00:00Z",
        id=id,
        href=href or f"https://api.example.com/{resource}/{id}",
    )


def make_record(
    uri: str = "invoices/42",
    fetch_date: datetime | None = None,
    body: bytes = b'{"id": 42}',
) -> ArchiveRecord:
    packer = Packer()
    packer.write(body)
    resource_type = uri.split("/", 1)[0]
    return ArchiveRecord(
        uri=uri,
        resource_type=resource_type,
        hook_date="2024-05-01T10:00:00Z",
        data=packer.close(),
        fetch_date=fetch_date or datetime.now(timezone.utc),
        digest="d" * 40,
    )


def signed_headers(body: bytes, key: str = APP_KEY) -> dict[str, str]:
    return {"X-Signature": sign(key, body), "Content-Type": "application/json"}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_key=APP_KEY,
        backend="memory",
        admin_token=ADMIN_TOKEN,
        rate_limit_enabled=False,
    )


@pytest.fixture
def store() -> MemoryArchiveStore:
    return MemoryArchiveStore()


@pytest.fixture
def queue() -> InMemoryTaskQueue:
    return InMemoryTaskQueue()


@pytest.fixture
def resources() -> FakeResourceServer:
    return FakeResourceServer()


@pytest.fixture
def http(resources) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(resources))


@pytest.fixture
def app(settings, store, queue, http):
    return create_app(settings, store=store, dispatcher=queue, http_client=http)


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def runner(queue, client) -> TaskRunner:
    """Delivers queued tasks back into the app under test."""
    return TaskRunner(queue, client)


@pytest.fixture
def long_ago() -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=400)
