"""SDrive backend REST client.

Wraps one ``httpx.AsyncClient`` pointed at the configured backend.  Every
call goes through :meth:`BackendClient._request`, which attaches the
session token and applies the uniform session rule: a 401 or 403 from the
backend logs the user out and raises :class:`SessionExpiredError`.

The object store is deliberately *not* reached through this client; see
:mod:`sdrive.upload.transfer`.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from typing import Any

import httpx

from sdrive.api.exceptions import (
    BackendError,
    BackendUnavailableError,
    FileOperationError,
    PresignError,
    SessionExpiredError,
)
from sdrive.api.schemas import (
    FilePayload,
    ListingResponse,
    LoginResponse,
    PresignLinkResponse,
    TicketRequestItem,
    TicketResponse,
    error_message,
)
from sdrive.models import ClientConfig
from sdrive.session import SessionStore

logger = logging.getLogger(__name__)

_SESSION_STATUSES = frozenset({401, 403})

_DELETE_MESSAGES: dict[int, str] = {
    404: "File not found or you do not have permission to delete this file.",
    400: "Invalid request. Please try again.",
    500: "Server error occurred while deleting the file. Please try again later.",
}


class TokenAuth(httpx.Auth):
    """Attach the current session token to every backend request.

    The token is read per request so a login or logout elsewhere takes
    effect without rebuilding the client.
    """

    def __init__(self, session: SessionStore, scheme: str = "Bearer") -> None:
        self._session = session
        self._scheme = scheme

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        token = self._session.token
        if token:
            request.headers["Authorization"] = f"{self._scheme} {token}"
        yield request


class BackendClient:
    """Async client for the SDrive backend API.

    Usage::

        async with BackendClient(config, SessionStore()) as api:
            listing = await api.list_files(page=1, per_page=10)

    Args:
        config: Client configuration (base URL, timeout, auth scheme).
        session: Session store supplying the token and receiving invalidations.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        config: ClientConfig,
        session: SessionStore,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._session = session
        self._http = httpx.AsyncClient(
            base_url=config.backend_url,
            timeout=config.api_timeout_seconds,
            auth=TokenAuth(session, config.auth_scheme),
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> str:
        """Exchange credentials for a session token.

        Raises:
            BackendError: On rejected credentials or a response without a token.
        """
        response = await self._request(
            "POST",
            "/api/auth/login/",
            json={"email": email, "password": password},
            session_bound=False,
        )
        body = response_json(response)
        if response.status_code != 200:
            raise BackendError(
                error_message(body, "Login failed. Please check your credentials."),
                response.status_code,
            )
        token = LoginResponse.model_validate(body or {}).token
        if not token:
            raise BackendError("Login failed: No token received.", response.status_code)
        return token

    async def register(self, email: str, password: str) -> dict[str, Any]:
        """Create an account. The backend emails a verification link."""
        response = await self._request(
            "POST",
            "/api/auth/register/",
            json={"email": email, "password": password},
            session_bound=False,
        )
        body = response_json(response)
        if not response.is_success:
            raise BackendError(error_message(body, "Registration failed."), response.status_code)
        return body if isinstance(body, dict) else {}

    async def verify_email(self, token: str) -> None:
        response = await self._request(
            "POST",
            "/api/auth/verify-email/",
            json={"token": token},
            session_bound=False,
        )
        if response.status_code != 200:
            raise BackendError(
                error_message(
                    response_json(response),
                    "Verification failed. The link may have expired. "
                    "Please request a new verification email.",
                ),
                response.status_code,
            )

    # ------------------------------------------------------------------
    # Upload negotiation
    # ------------------------------------------------------------------

    async def request_upload_tickets(self, items: list[TicketRequestItem]) -> TicketResponse:
        """``POST /api/files/upload/`` for the whole batch in one request.

        Raises:
            PresignError: If the call itself fails (per-file refusals are
                reported inside the response, not raised).
        """
        payload = {"files": [item.model_dump() for item in items]}
        response = await self._request("POST", "/api/files/upload/", json=payload)
        body = response_json(response)
        if not response.is_success:
            raise PresignError(
                error_message(body, f"Failed to request upload URLs (HTTP {response.status_code})"),
                response.status_code,
            )
        return TicketResponse.model_validate(body or {})

    async def confirm_uploads(self, object_keys: list[str]) -> Any:
        """``POST /api/files/confirm_uploads/`` with every transferred key."""
        response = await self._request(
            "POST", "/api/files/confirm_uploads/", json={"s3_keys": object_keys}
        )
        body = response_json(response)
        if not response.is_success:
            raise BackendError(
                error_message(body, f"Upload confirmation failed (HTTP {response.status_code})"),
                response.status_code,
            )
        return body

    async def presign_single(self, file_name: str) -> str:
        """Presigned PUT URL for a command-line upload of *file_name*."""
        response = await self._request(
            "GET", "/api/files/presign/", params={"file_name": file_name}
        )
        body = response_json(response)
        if not response.is_success:
            raise PresignError(
                error_message(body, "Failed to generate presigned URL"), response.status_code
            )
        return PresignLinkResponse.model_validate(body).presigned_url

    # ------------------------------------------------------------------
    # Listing and metadata
    # ------------------------------------------------------------------

    async def list_files(
        self, page: int = 1, per_page: int = 10, use_cache: bool = False
    ) -> ListingResponse:
        response = await self._request(
            "GET",
            "/api/v3/files/",
            params={
                "page": page,
                "per_page": per_page,
                "use_cache": "true" if use_cache else "false",
            },
        )
        body = response_json(response)
        if not response.is_success:
            raise BackendError(
                error_message(body, "Failed to fetch files. Please try again."),
                response.status_code,
            )
        return ListingResponse.model_validate(body)

    async def file_details(self, file_id: str) -> FilePayload:
        return await self._file_payload(f"/api/files/{file_id}/details/")

    async def refresh_file_metadata(self, file_id: str) -> FilePayload:
        return await self._file_payload(f"/api/files/{file_id}/refresh_file_metadata/")

    async def account_usage(self) -> dict[str, Any]:
        response = await self._request("GET", "/api/account/check_account_usage/")
        body = response_json(response)
        if not response.is_success:
            raise BackendError(
                error_message(body, "Could not fetch account usage."), response.status_code
            )
        return body if isinstance(body, dict) else {}

    # ------------------------------------------------------------------
    # Tier and download (status codes carry meaning; callers interpret)
    # ------------------------------------------------------------------

    async def change_tier(self, file_id: str, target_tier: str) -> httpx.Response:
        return await self._request(
            "POST", f"/api/files/{file_id}/change_tier/", json={"target_tier": target_tier}
        )

    async def download_link(self, file_id: str) -> httpx.Response:
        return await self._request("GET", f"/api/files/{file_id}/download_presigned_url/")

    # ------------------------------------------------------------------
    # File lifecycle
    # ------------------------------------------------------------------

    async def rename(self, object_key: str, new_filename: str) -> None:
        response = await self._request(
            "POST",
            "/api/files/rename/",
            json={"s3_key": object_key, "new_filename": new_filename},
        )
        if response.status_code != 200:
            raise FileOperationError(
                error_message(response_json(response), "Unexpected response from the server."),
                response.status_code,
            )

    async def delete(self, object_key: str) -> None:
        response = await self._request("DELETE", "/api/files/", json={"s3_key": object_key})
        if response.status_code != 200:
            message = _DELETE_MESSAGES.get(response.status_code) or error_message(
                response_json(response), "An error occurred while deleting the file."
            )
            raise FileOperationError(message, response.status_code)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _file_payload(self, path: str) -> FilePayload:
        response = await self._request("GET", path)
        body = response_json(response)
        if not response.is_success:
            raise FileOperationError(
                error_message(body, f"Could not fetch file details (HTTP {response.status_code})"),
                response.status_code,
            )
        return FilePayload.model_validate(body)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        session_bound: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one backend request.

        Transport failures become :class:`BackendUnavailableError`.  For
        session-bound calls a 401/403 invalidates the session and raises
        :class:`SessionExpiredError`; every other status is returned.
        """
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise BackendUnavailableError(
                f"No response from server ({exc.__class__.__name__}). "
                "Please check your network connection."
            ) from exc

        logger.debug("%s %s -> %d", method, path, response.status_code)

        if session_bound and response.status_code in _SESSION_STATUSES:
            self._session.invalidate()
            raise SessionExpiredError(
                error_message(response_json(response), "Session expired. Please log in again."),
                response.status_code,
            )
        return response


def response_json(response: httpx.Response) -> Any:
    """Decode a JSON body; ``None`` when empty, the raw text when not JSON."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
