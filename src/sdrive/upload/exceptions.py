"""Object-store transfer errors."""

from __future__ import annotations

from enum import Enum

FORBIDDEN_MESSAGE = (
    "Access denied by object storage (403). The upload URL may have expired, "
    "or the bucket policy or permissions do not allow this upload."
)

NETWORK_MESSAGE = "Network error during upload. No response from object storage."


class TransferErrorKind(str, Enum):
    """Why a direct object-store PUT failed."""

    FORBIDDEN = "forbidden"  # 403: expired/invalid signature or policy denial
    NETWORK = "network"  # no response at all
    OTHER = "other"  # any other non-2xx


class TransferError(Exception):
    """A direct PUT to the object store failed.

    Never retried internally: a presigned URL that was rejected once will be
    rejected again.
    """

    def __init__(
        self,
        kind: TransferErrorKind,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    @classmethod
    def forbidden(cls) -> TransferError:
        return cls(TransferErrorKind.FORBIDDEN, FORBIDDEN_MESSAGE, 403)

    @classmethod
    def network(cls, detail: str | None = None) -> TransferError:
        message = f"{NETWORK_MESSAGE} ({detail})" if detail else NETWORK_MESSAGE
        return cls(TransferErrorKind.NETWORK, message)

    @classmethod
    def other(cls, status_code: int, detail: str | None = None) -> TransferError:
        message = f"Upload failed with HTTP {status_code}"
        if detail:
            message = f"{message}: {detail}"
        return cls(TransferErrorKind.OTHER, message, status_code)
