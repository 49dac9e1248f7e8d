"""Exceptions raised by the SDrive backend client."""

from __future__ import annotations


class BackendError(Exception):
    """Base class for failures talking to the SDrive backend API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BackendUnavailableError(BackendError):
    """No response reached us from the backend (DNS, connect, timeout)."""


class SessionExpiredError(BackendError):
    """The backend answered 401/403: the session token is no longer valid.

    Raised only for backend API calls.  Object-store 403s are storage
    signature errors and surface as ``TransferError`` instead.
    """


class PresignError(BackendError):
    """The upload-ticket negotiation call failed as a whole."""


class TierChangeError(BackendError):
    """The backend refused a tier change."""


class FileOperationError(BackendError):
    """A rename, delete, download-link or details call failed."""
