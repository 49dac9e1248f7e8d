"""Data models and enums for the SDrive client."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from sdrive.constants import (
    API_TIMEOUT_SECONDS,
    DEFAULT_PER_PAGE,
    OBJECT_STORE_TIMEOUT_SECONDS,
    REFRESH_INTERVAL_SECONDS,
    RESTORE_WATCH_TIMEOUT_SECONDS,
    TRANSFER_CHUNK_SIZE,
)

logger = logging.getLogger(__name__)


class StorageTier(str, Enum):
    """Storage class of a listed file."""

    STANDARD = "standard"
    ARCHIVE = "archive"
    RESTORING = "restoring"

    def to_wire(self) -> str:
        """Return the name the backend uses for this tier."""
        return _TIER_TO_WIRE[self]

    @classmethod
    def from_wire(cls, value: str | None) -> StorageTier:
        """Parse a backend tier name.

        Unknown and missing values are treated as standard, the same
        default the listing view applies.
        """
        if value is None:
            return cls.STANDARD
        tier = _WIRE_TO_TIER.get(value.strip().lower())
        if tier is None:
            logger.debug("Unknown tier %r reported by backend, assuming standard", value)
            return cls.STANDARD
        return tier


_TIER_TO_WIRE: dict[StorageTier, str] = {
    StorageTier.STANDARD: "standard",
    StorageTier.ARCHIVE: "glacier",
    StorageTier.RESTORING: "unarchiving",
}

_WIRE_TO_TIER: dict[str, StorageTier] = {
    "standard": StorageTier.STANDARD,
    "restored": StorageTier.STANDARD,
    "glacier": StorageTier.ARCHIVE,
    "archive": StorageTier.ARCHIVE,
    "unarchiving": StorageTier.RESTORING,
    "restoring": StorageTier.RESTORING,
}


class UploadOutcome(str, Enum):
    """Per-file outcome of an upload batch."""

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class PendingUpload:
    """A selected file that has not yet been confirmed uploaded.

    ``bytes_transferred`` is written by the transfer progress callback and
    ``outcome``/``error_message`` by the orchestrator, once.
    """

    local_name: str
    byte_size: int
    mime_type: str
    requested_tier: StorageTier = StorageTier.STANDARD
    source: bytes | Path | None = None
    bytes_transferred: int = 0
    outcome: UploadOutcome = UploadOutcome.PENDING
    error_message: str | None = None

    @property
    def percent_complete(self) -> float:
        """Percentage of this file's bytes sent so far (0-100)."""
        if self.byte_size <= 0:
            return 0.0
        return min(100.0, self.bytes_transferred * 100.0 / self.byte_size)

    def mark_success(self) -> None:
        self._settle(UploadOutcome.SUCCESS, None)

    def mark_error(self, message: str) -> None:
        self._settle(UploadOutcome.ERROR, message)

    def _settle(self, outcome: UploadOutcome, message: str | None) -> None:
        if self.outcome is not UploadOutcome.PENDING:
            raise RuntimeError(
                f"Outcome for {self.local_name!r} already set to {self.outcome.value}"
            )
        self.outcome = outcome
        self.error_message = message


@dataclass(frozen=True)
class UploadTicket:
    """Server-issued authorization to PUT one object."""

    object_key: str
    transfer_url: str
    effective_content_type: str
    file_name: str


@dataclass(frozen=True)
class TicketRejection:
    """A file the backend declined to issue a ticket for."""

    file_name: str
    reason: str


@dataclass
class TicketBatch:
    """Partitioned response of one ticket negotiation call."""

    successful: list[UploadTicket] = field(default_factory=list)
    failed: list[TicketRejection] = field(default_factory=list)


@dataclass
class FileRecord:
    """A confirmed, listed file."""

    id: str
    object_key: str
    display_name: str
    size_bytes: int | None = None
    last_modified: datetime | None = None
    tier: StorageTier = StorageTier.STANDARD
    public_url: str | None = None

    def matches(self, identifier: str) -> bool:
        """True when *identifier* is this record's id or object key."""
        return identifier in (self.id, self.object_key)


@dataclass(frozen=True)
class UploadResultEntry:
    """Outcome of one file in a batch.

    ``object_key`` is ``None`` for files rejected before a ticket was issued.
    """

    file_name: str
    object_key: str | None
    outcome: UploadOutcome
    message: str | None = None

    def describe(self) -> str:
        label = self.object_key or self.file_name
        return f"{label}: {self.message or 'Unknown error'}"


@dataclass
class BatchUploadResult:
    """Outcome of one orchestrated upload batch. Never persisted."""

    entries: list[UploadResultEntry] = field(default_factory=list)
    confirmation_warning: str | None = None
    listing_refreshed: bool = False

    @property
    def successful_keys(self) -> list[str]:
        return [
            e.object_key
            for e in self.entries
            if e.outcome is UploadOutcome.SUCCESS and e.object_key is not None
        ]

    @property
    def failures(self) -> list[UploadResultEntry]:
        return [e for e in self.entries if e.outcome is UploadOutcome.ERROR]

    @property
    def failed_descriptions(self) -> list[str]:
        return [e.describe() for e in self.failures]

    @property
    def confirmed(self) -> bool:
        """True when at least one key was transferred and confirmation succeeded."""
        return bool(self.successful_keys) and self.confirmation_warning is None

    def summary(self) -> dict[str, int]:
        """Return batch summary counts."""
        return {
            "total": len(self.entries),
            "succeeded": len(self.successful_keys),
            "failed": len(self.failures),
        }


@dataclass
class ListingPage:
    """One page of the backend's paginated file listing."""

    files: list[FileRecord]
    page: int
    per_page: int
    total: int = 0
    total_pages: int = 1


@dataclass
class ClientConfig:
    """Configuration for the SDrive client.

    Controls the backend location, listing page size, restoration polling
    cadence and ceiling, HTTP timeouts and transfer fan-out.
    """

    backend_url: str = "http://localhost:8000"
    per_page: int = DEFAULT_PER_PAGE
    refresh_interval_seconds: float = REFRESH_INTERVAL_SECONDS
    restore_watch_timeout_seconds: float = RESTORE_WATCH_TIMEOUT_SECONDS
    api_timeout_seconds: float = API_TIMEOUT_SECONDS
    object_store_timeout_seconds: float = OBJECT_STORE_TIMEOUT_SECONDS
    transfer_chunk_size: int = TRANSFER_CHUNK_SIZE
    max_concurrent_transfers: int | None = None
    auth_scheme: str = "Bearer"
    default_tier: str = "standard"
