"""Shared pytest fixtures for SDrive client tests.

Provides an in-memory keyring, a scripted fake backend and a fake object
store (both served through ``httpx.MockTransport``), and wired-up client
components on top of them.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import keyring
import pytest
from keyring.errors import PasswordDeleteError

from sdrive.api.client import BackendClient
from sdrive.listing.cache import ListingCache
from sdrive.models import ClientConfig
from sdrive.services.drive import Drive
from sdrive.session import SessionStore

BACKEND_URL = "http://backend.test"
STORE_URL = "https://bucket.test"
TOKEN = "tok-123"

Handler = Callable[[httpx.Request], httpx.Response]


def file_payload(
    file_id: int | str,
    name: str,
    tier: str = "standard",
    size: int = 1024,
    s3_key: str | None = None,
) -> dict[str, Any]:
    """A listed file in the backend's wire format."""
    return {
        "id": file_id,
        "s3_key": s3_key or f"user-1/{name}",
        "file_name": name,
        "last_modified": "2024-05-01T12:00:00Z",
        "simple_url": f"{STORE_URL}/user-1/{name}",
        "metadata": {"size": size, "tier": tier},
    }


def presigned_url(name: str) -> str:
    return f"{STORE_URL}/user-1/{name}?X-Amz-Signature=secret&X-Amz-Expires=900"


class FakeBackend:
    """Scripted SDrive backend.

    Routes are keyed by ``(method, path)``; each maps to a fixed response
    or a handler.  Unrouted requests get a 404.  Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []

    def on(
        self,
        method: str,
        path: str,
        status: int = 200,
        json: Any = None,
        handler: Handler | None = None,
    ) -> None:
        if handler is None:

            def handler(request: httpx.Request) -> httpx.Response:
                if json is None:
                    return httpx.Response(status)
                return httpx.Response(status, json=json)

        self.routes[(method, path)] = handler

    def listing(self, files: list[dict[str, Any]], total: int | None = None, total_pages: int = 1) -> None:
        self.on(
            "GET",
            "/api/v3/files/",
            json={"files": files, "total": len(files) if total is None else total, "total_pages": total_pages},
        )

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def json_bodies(self, method: str, path: str) -> list[Any]:
        import json

        return [json.loads(r.content) for r in self.calls(method, path)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": f"no route for {request.url.path}"})
        return handler(request)


class FakeObjectStore:
    """Object store accepting presigned PUTs and GETs.

    ``statuses`` maps an object name (last path segment) to the status its
    PUT answers with; names in ``unreachable`` raise a connection error.
    """

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.puts: list[httpx.Request] = []
        self.statuses: dict[str, int] = {}
        self.unreachable: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        name = request.url.path.rsplit("/", 1)[-1]
        if name in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if request.method == "PUT":
            self.puts.append(request)
            status = self.statuses.get(name, 200)
            if 200 <= status < 300:
                self.objects[name] = request.content
            return httpx.Response(status, text="" if status < 300 else "<Error>denied</Error>")
        if request.method == "GET":
            if name not in self.objects:
                return httpx.Response(404)
            return httpx.Response(200, content=self.objects[name])
        return httpx.Response(405)

    def put_names(self) -> list[str]:
        return [r.url.path.rsplit("/", 1)[-1] for r in self.puts]


@pytest.fixture(autouse=True)
def fake_keyring(monkeypatch: pytest.MonkeyPatch) -> dict[tuple[str, str], str]:
    """Replace the system keyring with a dict for every test."""
    store: dict[tuple[str, str], str] = {}

    def get_password(service: str, key: str) -> str | None:
        return store.get((service, key))

    def set_password(service: str, key: str, value: str) -> None:
        store[(service, key)] = value

    def delete_password(service: str, key: str) -> None:
        if (service, key) not in store:
            raise PasswordDeleteError("not found")
        del store[(service, key)]

    monkeypatch.setattr(keyring, "get_password", get_password)
    monkeypatch.setattr(keyring, "set_password", set_password)
    monkeypatch.setattr(keyring, "delete_password", delete_password)
    monkeypatch.delenv("SDRIVE_TOKEN", raising=False)
    monkeypatch.delenv("SDRIVE_BACKEND_URL", raising=False)
    return store


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(backend_url=BACKEND_URL, refresh_interval_seconds=0.01, transfer_chunk_size=4)


@pytest.fixture
def session() -> SessionStore:
    store = SessionStore()
    store.login(TOKEN)
    return store


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
async def api(config: ClientConfig, session: SessionStore, backend: FakeBackend):
    client = BackendClient(config, session, transport=httpx.MockTransport(backend))
    yield client
    await client.close()


@pytest.fixture
def cache(api: BackendClient) -> ListingCache:
    return ListingCache(api)


@pytest.fixture
async def drive(
    config: ClientConfig,
    session: SessionStore,
    backend: FakeBackend,
    object_store: FakeObjectStore,
):
    d = Drive(
        config,
        session,
        transport=httpx.MockTransport(backend),
        object_store_transport=httpx.MockTransport(object_store),
    )
    yield d
    await d.close()
