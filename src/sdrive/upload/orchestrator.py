"""Batch upload orchestrator.

Composes the upload primitives (presign client, transfer executor,
progress tracker) into one batch operation:

* Negotiates every ticket in a single backend call
* Fans transfers out concurrently, optionally capped by ``asyncio.Semaphore``
* Waits for every transfer to settle before confirming
* Confirms exactly the keys that transferred, in one call
* Refreshes the listing unconditionally at the end
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from collections.abc import Callable, Sequence

from sdrive.api.client import BackendClient
from sdrive.api.exceptions import BackendError, SessionExpiredError
from sdrive.listing.cache import ListingCache
from sdrive.listing.events import EventKind
from sdrive.models import (
    BatchUploadResult,
    PendingUpload,
    TicketBatch,
    UploadOutcome,
    UploadResultEntry,
    UploadTicket,
)
from sdrive.upload.exceptions import TransferError
from sdrive.upload.presign import PresignClient, TicketRequest
from sdrive.upload.progress import UploadProgressTracker, aggregate_progress
from sdrive.upload.transfer import ObjectTransferExecutor

logger = logging.getLogger(__name__)

CONFIRMATION_WARNING = (
    "Files were uploaded but confirmation failed. Please contact support."
)
EMPTY_FILE_MESSAGE = "File is empty and cannot be uploaded."
NO_TICKET_MESSAGE = "The server returned no upload URL for this file."
UNMATCHED_TICKET_MESSAGE = "Upload URL did not match any selected file."


class UploadOrchestrator:
    """Runs presign -> transfer -> confirm for a batch of files.

    Usage::

        orchestrator = UploadOrchestrator(presign, transfer, api, cache)
        result = await orchestrator.upload_batch(pending)

    Args:
        presign: Ticket negotiation client.
        transfer: Object-store transfer executor.
        api: Backend client (confirmation call).
        cache: Listing cache refreshed after every batch, if any.
        max_concurrent_transfers: Cap on simultaneous PUTs; ``None`` starts
            every transfer at once.
        progress: Optional Rich tracker (omit for headless use).
        on_progress: Called with the aggregate percentage after every
            per-file progress report.
    """

    def __init__(
        self,
        presign: PresignClient,
        transfer: ObjectTransferExecutor,
        api: BackendClient,
        cache: ListingCache | None = None,
        max_concurrent_transfers: int | None = None,
        progress: UploadProgressTracker | None = None,
        on_progress: Callable[[float], None] | None = None,
    ) -> None:
        self._presign = presign
        self._transfer = transfer
        self._api = api
        self._cache = cache
        self._progress = progress
        self._on_progress = on_progress
        self._semaphore = (
            asyncio.Semaphore(max_concurrent_transfers) if max_concurrent_transfers else None
        )
        self._in_flight: list[PendingUpload] = []

    @property
    def overall_progress(self) -> float:
        """Aggregate percentage of the batch currently in flight."""
        return aggregate_progress(self._in_flight)

    @property
    def in_flight(self) -> list[PendingUpload]:
        return list(self._in_flight)

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def upload_batch(self, uploads: Sequence[PendingUpload]) -> BatchUploadResult:
        """Upload *uploads* and report one outcome per file.

        1. Reject empty files locally
        2. Request all tickets in one call; refused files become errors
        3. Transfer every ticketed file concurrently and wait for all
        4. Confirm the successful keys once
        5. Refresh the listing, whatever happened above

        Raises:
            SessionExpiredError: If the session is rejected during ticket
                negotiation.  Later session failures are reported in the
                result instead.
        """
        result = BatchUploadResult()
        if not uploads:
            return result

        self._in_flight = list(uploads)
        try:
            # Uploads settled by the caller are reported as they are
            for upload in uploads:
                if upload.outcome is not UploadOutcome.PENDING:
                    logger.debug("Skipping %s: already %s", upload.local_name, upload.outcome.value)
                elif upload.byte_size <= 0:
                    upload.mark_error(EMPTY_FILE_MESSAGE)

            candidates = [u for u in uploads if u.outcome is UploadOutcome.PENDING]
            tickets = await self._negotiate(candidates)
            jobs, orphans = self._match_tickets(candidates, tickets)

            logger.info(
                "Transferring %d of %d files (%d refused)",
                len(jobs),
                len(uploads),
                len(tickets.failed),
            )
            await self._fan_out(jobs)

            keys = {id(upload): ticket.object_key for upload, ticket in jobs}
            result.entries = [
                UploadResultEntry(
                    file_name=u.local_name,
                    object_key=keys.get(id(u)),
                    outcome=u.outcome,
                    message=u.error_message,
                )
                for u in uploads
            ]
            result.entries.extend(
                UploadResultEntry(
                    file_name=t.file_name,
                    object_key=t.object_key,
                    outcome=UploadOutcome.ERROR,
                    message=UNMATCHED_TICKET_MESSAGE,
                )
                for t in orphans
            )

            await self._confirm(result)
            await self._refresh_listing(result)
        finally:
            self._in_flight = []

        logger.info(
            "Upload batch complete: %d succeeded, %d failed",
            len(result.successful_keys),
            len(result.failures),
        )
        return result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _negotiate(self, candidates: list[PendingUpload]) -> TicketBatch:
        if not candidates:
            return TicketBatch()
        requests = [
            TicketRequest(
                name=u.local_name,
                mime_type=u.mime_type,
                size_bytes=u.byte_size,
                tier=u.requested_tier,
            )
            for u in candidates
        ]
        try:
            return await self._presign.request_tickets(requests)
        except SessionExpiredError:
            raise
        except BackendError as exc:
            logger.error("Ticket negotiation failed for the whole batch: %s", exc.message)
            for upload in candidates:
                upload.mark_error(exc.message)
            return TicketBatch()

    def _match_tickets(
        self, candidates: list[PendingUpload], tickets: TicketBatch
    ) -> tuple[list[tuple[PendingUpload, UploadTicket]], list[UploadTicket]]:
        """Pair tickets and refusals with their files by name.

        Duplicate names are consumed in selection order.  A file the
        response never mentions is marked failed.  Files that already
        failed (the whole negotiation was refused) are left alone.
        """
        by_name: dict[str, deque[PendingUpload]] = defaultdict(deque)
        for upload in candidates:
            if upload.outcome is UploadOutcome.PENDING:
                by_name[upload.local_name].append(upload)

        for rejection in tickets.failed:
            queue = by_name.get(rejection.file_name)
            if queue:
                queue.popleft().mark_error(rejection.reason)
            else:
                logger.warning("Refusal for unknown file %r ignored", rejection.file_name)

        jobs: list[tuple[PendingUpload, UploadTicket]] = []
        orphans: list[UploadTicket] = []
        for ticket in tickets.successful:
            queue = by_name.get(ticket.file_name)
            if not queue:
                logger.warning("No selected file matches ticket for %r", ticket.file_name)
                orphans.append(ticket)
                continue
            jobs.append((queue.popleft(), ticket))

        for queue in by_name.values():
            for upload in queue:
                upload.mark_error(NO_TICKET_MESSAGE)
        return jobs, orphans

    async def _fan_out(self, jobs: list[tuple[PendingUpload, UploadTicket]]) -> None:
        if not jobs:
            return
        results = await asyncio.gather(
            *(self._transfer_one(upload, ticket) for upload, ticket in jobs),
            return_exceptions=True,
        )
        for (upload, _), outcome in zip(jobs, results):
            if isinstance(outcome, BaseException):
                logger.error("Transfer task for %s raised: %s", upload.local_name, outcome)
                if upload.outcome is UploadOutcome.PENDING:
                    upload.mark_error(str(outcome) or outcome.__class__.__name__)

    async def _transfer_one(self, upload: PendingUpload, ticket: UploadTicket) -> None:
        if self._semaphore is None:
            await self._run_transfer(upload, ticket)
            return
        async with self._semaphore:
            await self._run_transfer(upload, ticket)

    async def _run_transfer(self, upload: PendingUpload, ticket: UploadTicket) -> None:
        if upload.source is None:
            upload.mark_error("No file contents to upload.")
            self._report_failure(upload)
            return

        if self._progress is not None:
            self._progress.add_file(upload.local_name, upload.byte_size)

        def on_progress(sent: int, total: int) -> None:
            upload.bytes_transferred = sent
            overall = aggregate_progress(self._in_flight)
            if self._progress is not None:
                self._progress.file_progress(upload.local_name, sent, overall)
            if self._on_progress is not None:
                self._on_progress(overall)

        try:
            await self._transfer.transfer(ticket, upload.source, on_progress)
        except TransferError as exc:
            upload.mark_error(exc.message)
            self._report_failure(upload)
            return
        except OSError as exc:
            upload.mark_error(f"Could not read file: {exc}")
            self._report_failure(upload)
            return

        upload.mark_success()
        if self._progress is not None:
            self._progress.file_uploaded(upload.local_name)

    def _report_failure(self, upload: PendingUpload) -> None:
        if self._progress is not None:
            self._progress.file_failed(upload.local_name, upload.error_message or "")

    async def _confirm(self, result: BatchUploadResult) -> None:
        keys = result.successful_keys
        if not keys:
            return
        try:
            await self._api.confirm_uploads(keys)
        except BackendError as exc:
            # Objects exist in storage but will not show up in listings
            logger.error("Confirmation of %d uploaded keys failed: %s", len(keys), exc.message)
            result.confirmation_warning = CONFIRMATION_WARNING
            return
        logger.info("Confirmed %d uploaded keys", len(keys))

    async def _refresh_listing(self, result: BatchUploadResult) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.refresh()
        except BackendError as exc:
            logger.warning("Listing refresh after upload failed: %s", exc.message)
        else:
            result.listing_refreshed = True
        self._cache.events.publish(
            EventKind.BATCH_UPLOADED,
            detail={"keys": result.successful_keys, "confirmed": result.confirmed},
        )
