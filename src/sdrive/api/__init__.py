"""Client for the SDrive backend REST API."""

from sdrive.api.client import BackendClient, TokenAuth
from sdrive.api.exceptions import (
    BackendError,
    BackendUnavailableError,
    FileOperationError,
    PresignError,
    SessionExpiredError,
    TierChangeError,
)

__all__ = [
    "BackendClient",
    "BackendError",
    "BackendUnavailableError",
    "FileOperationError",
    "PresignError",
    "SessionExpiredError",
    "TierChangeError",
    "TokenAuth",
]
