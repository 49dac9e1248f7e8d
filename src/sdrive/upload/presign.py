"""Upload-ticket negotiation.

One batch request asks the backend for a presigned PUT URL per file.  The
backend may approve some files and refuse others (quota, validation) in
the same response; the result is always partitioned, never a single
verdict for the batch.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from sdrive.api.client import BackendClient
from sdrive.api.schemas import TicketRequestItem
from sdrive.models import StorageTier, TicketBatch, TicketRejection, UploadTicket

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class TicketRequest:
    """What the backend needs to know about one file to issue a ticket."""

    name: str
    mime_type: str
    size_bytes: int
    tier: StorageTier = StorageTier.STANDARD


class PresignClient:
    """Requests upload tickets for a batch of files in a single call.

    Does not touch ``PendingUpload`` state; the orchestrator does.
    """

    def __init__(self, api: BackendClient) -> None:
        self._api = api

    async def request_tickets(self, files: Sequence[TicketRequest]) -> TicketBatch:
        """Negotiate tickets for *files*.

        Args:
            files: Non-empty batch; every entry needs a positive size.

        Returns:
            ``TicketBatch`` with approved tickets and per-file refusals.

        Raises:
            ValueError: On an empty batch or a non-positive size.
            PresignError: If the negotiation call itself fails.
        """
        if not files:
            raise ValueError("Cannot request upload tickets for an empty batch")
        for f in files:
            if f.size_bytes <= 0:
                raise ValueError(f"File {f.name!r} has non-positive size {f.size_bytes}")

        items = [
            TicketRequestItem(
                file_name=f.name,
                content_type=f.mime_type,
                file_size=f.size_bytes,
                tier=f.tier.to_wire(),
            )
            for f in files
        ]
        logger.info("Requesting upload tickets for %d files", len(items))
        response = await self._api.request_upload_tickets(items)

        requested_types = {f.name: f.mime_type for f in files}
        batch = TicketBatch()
        for grant in response.successful:
            # The backend's content type is what the URL was signed with
            content_type = (
                grant.content_type
                or requested_types.get(grant.file_name)
                or DEFAULT_CONTENT_TYPE
            )
            batch.successful.append(
                UploadTicket(
                    object_key=grant.s3_key,
                    transfer_url=grant.presigned_url,
                    effective_content_type=content_type,
                    file_name=grant.file_name,
                )
            )
        for denial in response.failed:
            batch.failed.append(
                TicketRejection(
                    file_name=denial.file_name,
                    reason=denial.message or "Unknown error",
                )
            )

        logger.info(
            "Ticket negotiation: %d approved, %d refused",
            len(batch.successful),
            len(batch.failed),
        )
        return batch
