"""Tests for the backend REST client and its session rule."""

from __future__ import annotations

import httpx
import pytest

from sdrive.api.client import BackendClient
from sdrive.api.exceptions import (
    BackendError,
    BackendUnavailableError,
    FileOperationError,
    SessionExpiredError,
)
from sdrive.models import ClientConfig
from sdrive.session import SessionStore

from conftest import TOKEN, FakeBackend, file_payload


class TestAuthentication:
    """Token handling and the 401/403 rule."""

    async def test_bearer_token_attached(self, api: BackendClient, backend: FakeBackend):
        backend.listing([])
        await api.list_files()
        (request,) = backend.requests
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"

    async def test_custom_scheme(self, session: SessionStore, backend: FakeBackend):
        config = ClientConfig(backend_url="http://backend.test", auth_scheme="Token")
        backend.listing([])
        async with BackendClient(config, session, transport=httpx.MockTransport(backend)) as api:
            await api.list_files()
        assert backend.requests[0].headers["Authorization"] == f"Token {TOKEN}"

    @pytest.mark.parametrize("status", [401, 403])
    async def test_rejected_token_logs_out(
        self, api: BackendClient, backend: FakeBackend, session: SessionStore, status: int
    ):
        notified: list[bool] = []
        session.add_invalidation_listener(lambda: notified.append(True))
        backend.on("GET", "/api/v3/files/", status=status, json={"detail": "Invalid token."})

        with pytest.raises(SessionExpiredError, match="Invalid token"):
            await api.list_files()

        assert session.token is None
        assert notified == [True]

    async def test_rejected_env_token_logs_out(
        self, config: ClientConfig, backend: FakeBackend, monkeypatch: pytest.MonkeyPatch
    ):
        """A token from SDRIVE_TOKEN is dropped for the rest of the process."""
        monkeypatch.setenv("SDRIVE_TOKEN", "env-token")
        session = SessionStore()
        backend.on("GET", "/api/v3/files/", status=401, json={"detail": "Invalid token."})

        async with BackendClient(config, session, transport=httpx.MockTransport(backend)) as api:
            with pytest.raises(SessionExpiredError):
                await api.list_files()
            assert not session.is_authenticated

            backend.listing([])
            await api.list_files()

        assert backend.requests[0].headers["Authorization"] == "Bearer env-token"
        assert "Authorization" not in backend.requests[1].headers

    async def test_no_header_once_logged_out(self, api: BackendClient, backend: FakeBackend, session: SessionStore):
        session.logout()
        backend.listing([])
        await api.list_files()
        assert "Authorization" not in backend.requests[0].headers

    async def test_login_failure_is_not_session_expiry(
        self, api: BackendClient, backend: FakeBackend, session: SessionStore
    ):
        """Bad credentials do not log out an existing session."""
        backend.on("POST", "/api/auth/login/", status=401, json={"error": "Invalid credentials"})
        with pytest.raises(BackendError, match="Invalid credentials") as exc_info:
            await api.login("a@b.c", "wrong")
        assert not isinstance(exc_info.value, SessionExpiredError)
        assert session.token == TOKEN

    async def test_login_returns_token(self, api: BackendClient, backend: FakeBackend):
        backend.on("POST", "/api/auth/login/", json={"token": "new-token"})
        assert await api.login("a@b.c", "pw") == "new-token"
        assert backend.json_bodies("POST", "/api/auth/login/") == [{"email": "a@b.c", "password": "pw"}]

    async def test_login_without_token(self, api: BackendClient, backend: FakeBackend):
        backend.on("POST", "/api/auth/login/", json={})
        with pytest.raises(BackendError, match="No token"):
            await api.login("a@b.c", "pw")


class TestTransport:
    """Failures before any response."""

    async def test_network_failure(self, session: SessionStore, config: ClientConfig):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with BackendClient(config, session, transport=httpx.MockTransport(refuse)) as api:
            with pytest.raises(BackendUnavailableError, match="ConnectError"):
                await api.list_files()
        assert session.token == TOKEN


class TestEndpoints:
    """Request shapes and error mapping."""

    async def test_listing_use_cache_param(self, api: BackendClient, backend: FakeBackend):
        backend.listing([file_payload(1, "a")])
        response = await api.list_files(page=2, per_page=5, use_cache=True)
        assert len(response.files) == 1
        params = backend.requests[0].url.params
        assert (params["page"], params["per_page"], params["use_cache"]) == ("2", "5", "true")

    async def test_confirm_sends_keys(self, api: BackendClient, backend: FakeBackend):
        backend.on("POST", "/api/files/confirm_uploads/", json={"confirmed": 2})
        await api.confirm_uploads(["k/a", "k/b"])
        assert backend.json_bodies("POST", "/api/files/confirm_uploads/") == [{"s3_keys": ["k/a", "k/b"]}]

    @pytest.mark.parametrize(
        "status, message",
        [
            (404, "File not found or you do not have permission to delete this file."),
            (400, "Invalid request. Please try again."),
            (500, "Server error occurred while deleting the file. Please try again later."),
        ],
    )
    async def test_delete_messages(self, api: BackendClient, backend: FakeBackend, status: int, message: str):
        backend.on("DELETE", "/api/files/", status=status, json={"error": "raw"})
        with pytest.raises(FileOperationError) as exc_info:
            await api.delete("k/a")
        assert exc_info.value.message == message

    async def test_delete_other_status_uses_body(self, api: BackendClient, backend: FakeBackend):
        backend.on("DELETE", "/api/files/", status=409, json={"error": "File is locked"})
        with pytest.raises(FileOperationError, match="File is locked"):
            await api.delete("k/a")

    async def test_rename_body(self, api: BackendClient, backend: FakeBackend):
        backend.on("POST", "/api/files/rename/", json={"message": "ok"})
        await api.rename("k/a.txt", "b.txt")
        assert backend.json_bodies("POST", "/api/files/rename/") == [
            {"s3_key": "k/a.txt", "new_filename": "b.txt"}
        ]

    async def test_non_json_error_body(self, api: BackendClient, backend: FakeBackend):
        backend.on(
            "GET",
            "/api/account/check_account_usage/",
            handler=lambda request: httpx.Response(502, text="Bad Gateway"),
        )
        with pytest.raises(BackendError, match="Bad Gateway"):
            await api.account_usage()

    async def test_presign_single(self, api: BackendClient, backend: FakeBackend):
        backend.on("GET", "/api/files/presign/", json={"presigned_url": "https://bucket.test/x?sig=1"})
        assert await api.presign_single("x") == "https://bucket.test/x?sig=1"
        assert backend.requests[0].url.params["file_name"] == "x"
