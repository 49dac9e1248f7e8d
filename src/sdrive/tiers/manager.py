"""Tier changes and download links for listed files.

HTTP status codes carry meaning on these endpoints:

* **200** -- the change applied (or the link is ready)
* **202** -- restoration started / the file must be restored first
* **203** -- the file is already being restored

202 and 203 are informational and come back as result objects.  Only
other statuses raise.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_result,
    stop_after_delay,
    wait_exponential,
)

from sdrive.api.client import BackendClient, response_json
from sdrive.api.exceptions import FileOperationError, TierChangeError
from sdrive.api.schemas import (
    DownloadLinkResponse,
    FilePayload,
    TierChangeResponse,
    error_message,
)
from sdrive.constants import RESTORE_WAIT_MAX_DELAY_SECONDS, RESTORE_WATCH_TIMEOUT_SECONDS
from sdrive.listing.cache import ListingCache
from sdrive.models import FileRecord, StorageTier
from sdrive.tiers.fsm import TransitionNotAllowed, next_tier

if TYPE_CHECKING:
    from sdrive.tiers.refresher import RestorationRefresher

logger = logging.getLogger(__name__)

NEEDS_RESTORE_MESSAGE = (
    "File is archived and needs to be restored. Please check back in one day."
)
ALREADY_RESTORING_MESSAGE = (
    "File is already being restored. Please check back after restoration completes."
)
RESTORE_STARTED_MESSAGE = (
    "Restoration started. Please check back after restoration completes."
)


class TierChangeKind(str, Enum):
    IMMEDIATE = "immediate"  # 200: applied, record updated
    ACCEPTED = "accepted"  # 202: in progress on the backend
    ALREADY_RESTORING = "already_restoring"  # 203
    UNCHANGED = "unchanged"  # already in the target tier, nothing sent


@dataclass(frozen=True)
class TierChangeResult:
    """Outcome of a tier-change request that did not fail."""

    kind: TierChangeKind
    record: FileRecord
    message: str | None = None

    @property
    def informational(self) -> bool:
        """True for outcomes the user should see as a notice, not a success."""
        return self.kind is not TierChangeKind.IMMEDIATE


class DownloadKind(str, Enum):
    READY = "ready"
    NEEDS_RESTORE = "needs_restore"
    ALREADY_RESTORING = "already_restoring"


@dataclass(frozen=True)
class DownloadLink:
    """A presigned download URL, or why there is none yet."""

    kind: DownloadKind
    url: str | None = None
    file_name: str | None = None
    message: str | None = None

    @property
    def ready(self) -> bool:
        return self.kind is DownloadKind.READY


class RestoreTimeoutError(Exception):
    """A file was still restoring when the wait deadline passed."""

    def __init__(self, file_id: str, timeout: float) -> None:
        super().__init__(f"File {file_id} still restoring after {timeout:.0f}s")
        self.file_id = file_id
        self.timeout = timeout


class TierManager:
    """Issues tier changes and download-link requests, patching the cache.

    Args:
        api: Backend client.
        cache: Listing cache holding the records being changed.
        refresher: Restoration refresher to arm when a file starts
            restoring; optional so one-shot commands can skip polling.
    """

    def __init__(
        self,
        api: BackendClient,
        cache: ListingCache,
        refresher: RestorationRefresher | None = None,
    ) -> None:
        self._api = api
        self._cache = cache
        self._refresher = refresher

    # ------------------------------------------------------------------
    # Tier change
    # ------------------------------------------------------------------

    async def request_tier_change(
        self, file_id: str, target: StorageTier
    ) -> TierChangeResult:
        """Move *file_id* to *target* (``STANDARD`` restores, ``ARCHIVE`` archives).

        Raises:
            ValueError: If *target* is ``RESTORING``.
            TierChangeError: If the change is illegal from the file's
                current tier or the backend refuses it.  The record is
                left unchanged.
        """
        if target is StorageTier.RESTORING:
            raise ValueError("Cannot request the restoring tier directly; restore to standard")

        record = await self.resolve(file_id)
        if record.tier is target:
            return TierChangeResult(
                TierChangeKind.UNCHANGED, record, f"File is already in {target.value} storage."
            )

        request_event = _request_event(record.tier, target)
        try:
            next_tier(record.tier, request_event)
        except TransitionNotAllowed as exc:
            raise TierChangeError(
                f"Cannot move a {record.tier.value} file to {target.value} storage."
            ) from exc

        logger.info("Requesting %s -> %s for %s", record.tier.value, target.value, record.id)
        response = await self._api.change_tier(record.id, target.to_wire())
        body = response_json(response)

        if response.status_code == 200:
            return self._apply_immediate(record, target, body)

        if response.status_code in (202, 203):
            kind = (
                TierChangeKind.ACCEPTED
                if response.status_code == 202
                else TierChangeKind.ALREADY_RESTORING
            )
            if target is StorageTier.ARCHIVE:
                # Archiving is not tracked while pending; the next listing shows it
                return TierChangeResult(kind, record, error_message(body, "Archive request accepted."))
            updated = self._mark_restoring(record)
            default = RESTORE_STARTED_MESSAGE if kind is TierChangeKind.ACCEPTED else ALREADY_RESTORING_MESSAGE
            return TierChangeResult(kind, updated, error_message(body, default))

        logger.warning("Tier change for %s rejected with %d", record.id, response.status_code)
        raise TierChangeError(
            error_message(body, f"Failed to change storage tier (HTTP {response.status_code})"),
            response.status_code,
        )

    def _apply_immediate(
        self, record: FileRecord, target: StorageTier, body: object
    ) -> TierChangeResult:
        parsed = TierChangeResponse.model_validate(body if isinstance(body, dict) else {})
        metadata = parsed.metadata
        if metadata is not None and metadata.tier:
            tier = StorageTier.from_wire(metadata.tier)
        else:
            tier = next_tier(record.tier, _success_event(record.tier, target))

        changes: dict[str, object] = {"tier": tier}
        if metadata is not None and metadata.size is not None:
            changes["size_bytes"] = metadata.size
        if tier is StorageTier.ARCHIVE:
            changes["public_url"] = None
        updated = self._cache.track(dataclasses.replace(record, **changes))
        logger.info("%s is now %s", record.id, tier.value)
        return TierChangeResult(TierChangeKind.IMMEDIATE, updated, parsed.message)

    def _mark_restoring(self, record: FileRecord) -> FileRecord:
        event = "restore" if record.tier is StorageTier.ARCHIVE else "restore_pending"
        tier = next_tier(record.tier, event)
        updated = self._cache.track(dataclasses.replace(record, tier=tier, public_url=None))
        if self._refresher is not None:
            self._refresher.watch(updated.id)
        return updated

    # ------------------------------------------------------------------
    # Download link
    # ------------------------------------------------------------------

    async def request_download(self, file_id: str) -> DownloadLink:
        """Ask for a presigned download URL.

        Archived and restoring files yield ``NEEDS_RESTORE`` and
        ``ALREADY_RESTORING`` links without a URL; the record is not
        touched in either case.

        Raises:
            FileOperationError: On any other non-200 status.
        """
        record = await self.resolve(file_id)
        response = await self._api.download_link(record.id)
        body = response_json(response)

        if response.status_code == 200:
            link = DownloadLinkResponse.model_validate(body)
            return DownloadLink(
                DownloadKind.READY,
                url=link.presigned_url,
                file_name=link.file_name or record.display_name,
            )
        if response.status_code == 202:
            return DownloadLink(
                DownloadKind.NEEDS_RESTORE,
                file_name=record.display_name,
                message=NEEDS_RESTORE_MESSAGE,
            )
        if response.status_code == 203:
            return DownloadLink(
                DownloadKind.ALREADY_RESTORING,
                file_name=record.display_name,
                message=ALREADY_RESTORING_MESSAGE,
            )
        raise FileOperationError(
            error_message(body, "Failed to get download URL."), response.status_code
        )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_file(self, file_id: str) -> FileRecord:
        """Re-fetch one file's metadata and store it in the cache.

        Re-arms the restoration watch when the file is still restoring.
        """
        payload = await self._api.refresh_file_metadata(file_id)
        record = _record_for(payload, file_id)
        record = self._cache.track(record)
        if record.tier is StorageTier.RESTORING and self._refresher is not None:
            self._refresher.watch(record.id)
        return record

    async def wait_until_restored(
        self,
        file_id: str,
        timeout: float = RESTORE_WATCH_TIMEOUT_SECONDS,
        min_delay: float = 60.0,
        max_delay: float = RESTORE_WAIT_MAX_DELAY_SECONDS,
    ) -> FileRecord:
        """Poll *file_id* with exponential backoff until it leaves ``restoring``.

        Raises:
            RestoreTimeoutError: If *timeout* seconds pass first.
        """
        record = await self.resolve(file_id)
        try:
            async for attempt in AsyncRetrying(
                wait=wait_exponential(multiplier=min_delay, min=min_delay, max=max_delay),
                stop=stop_after_delay(timeout),
                retry=retry_if_result(lambda r: r.tier is StorageTier.RESTORING),
                reraise=True,
            ):
                with attempt:
                    record = await self.refresh_file(record.id)
                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(record)
        except RetryError as exc:
            raise RestoreTimeoutError(record.id, timeout) from exc
        return record

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def resolve(self, file_id: str) -> FileRecord:
        """Cached record for *file_id*, fetching and caching it when absent."""
        record = self._cache.get(file_id)
        if record is not None:
            return record
        payload = await self._api.file_details(file_id)
        return self._cache.track(_record_for(payload, file_id))


def _record_for(payload: FilePayload, file_id: str) -> FileRecord:
    record = payload.to_record()
    if payload.id is None and record.object_key != file_id:
        record = dataclasses.replace(record, id=file_id)
    return record


def _request_event(current: StorageTier, target: StorageTier) -> str:
    if target is StorageTier.ARCHIVE:
        return "archive_file"
    if current is StorageTier.RESTORING:
        return "restore_pending"
    return "restore"


def _success_event(current: StorageTier, target: StorageTier) -> str:
    if target is StorageTier.ARCHIVE:
        return "archive_file"
    if current is StorageTier.RESTORING:
        return "complete_restore"
    return "restore_immediate"
