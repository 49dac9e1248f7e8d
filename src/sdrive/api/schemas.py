"""Pydantic v2 models for the SDrive backend wire format.

Parse-side only: responses are validated here and converted into the
dataclasses in :mod:`sdrive.models`, which the rest of the client uses.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sdrive.models import FileRecord, ListingPage, StorageTier


class TicketRequestItem(BaseModel):
    """One entry of the upload-ticket request body."""

    file_name: str
    content_type: str
    file_size: int = Field(gt=0)
    tier: str


class TicketGrant(BaseModel):
    """A ticket the backend issued."""

    presigned_url: str
    s3_key: str
    file_name: str
    content_type: str | None = None


class TicketDenial(BaseModel):
    """A file the backend refused to issue a ticket for."""

    file_name: str
    message: str | None = None


class TicketResponse(BaseModel):
    """Partitioned response of ``POST /api/files/upload/``."""

    successful: list[TicketGrant] = Field(default_factory=list)
    failed: list[TicketDenial] = Field(default_factory=list)

    @field_validator("successful", "failed", mode="before")
    @classmethod
    def _none_as_empty(cls, value: object) -> object:
        return [] if value is None else value


class FileMetadata(BaseModel):
    """Storage metadata nested under each listed file."""

    model_config = ConfigDict(extra="allow")

    size: int | None = None
    tier: str | None = None


class FilePayload(BaseModel):
    """A listed file as the backend reports it."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    s3_key: str
    file_name: str
    last_modified: datetime | None = None
    simple_url: str | None = None
    metadata: FileMetadata = Field(default_factory=FileMetadata)

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: object) -> object:
        return None if value is None else str(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_as_empty_metadata(cls, value: object) -> object:
        return {} if value is None else value

    def to_record(self) -> FileRecord:
        """Convert to a :class:`FileRecord`.

        Archived objects have no resolvable link, so ``public_url`` is
        dropped for them.
        """
        tier = StorageTier.from_wire(self.metadata.tier)
        return FileRecord(
            id=self.id or self.s3_key,
            object_key=self.s3_key,
            display_name=self.file_name,
            size_bytes=self.metadata.size,
            last_modified=self.last_modified,
            tier=tier,
            public_url=None if tier is StorageTier.ARCHIVE else self.simple_url,
        )


class ListingResponse(BaseModel):
    """Response of ``GET /api/v3/files/``."""

    files: list[FilePayload]
    total: int = 0
    total_pages: int = 1

    def to_page(self, page: int, per_page: int) -> ListingPage:
        return ListingPage(
            files=[f.to_record() for f in self.files],
            page=page,
            per_page=per_page,
            total=self.total,
            total_pages=max(1, self.total_pages or 1),
        )


class TierChangeResponse(BaseModel):
    """Body of ``POST /api/files/{id}/change_tier/``."""

    model_config = ConfigDict(extra="allow")

    message: str | None = None
    metadata: FileMetadata | None = None


class DownloadLinkResponse(BaseModel):
    """Body of a 200 from ``GET /api/files/{id}/download_presigned_url/``."""

    presigned_url: str
    file_name: str | None = None


class PresignLinkResponse(BaseModel):
    """Body of ``GET /api/files/presign/``."""

    presigned_url: str


class LoginResponse(BaseModel):
    token: str | None = None


def error_message(body: object, default: str) -> str:
    """Extract the server's human-readable message from an error body."""
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            value = body.get(key)
            if value:
                return str(value)
    if isinstance(body, str) and body.strip():
        return body.strip()
    return default
