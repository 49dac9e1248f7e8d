"""File lifecycle service: rename, delete, download, usage, presign command.

Every operation that changes a listed file updates the listing cache and
announces itself on the listing event stream.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TransferSpeedColumn,
)

from sdrive.api.client import BackendClient
from sdrive.api.exceptions import FileOperationError
from sdrive.constants import OBJECT_STORE_TIMEOUT_SECONDS, TRANSFER_CHUNK_SIZE
from sdrive.listing.cache import ListingCache
from sdrive.listing.events import EventKind
from sdrive.models import FileRecord
from sdrive.tiers.manager import DownloadLink, TierManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownloadResult:
    """What a download request produced: a file on disk, or a notice."""

    link: DownloadLink
    path: Path | None = None
    bytes_written: int = 0


class FileService:
    """Async facade for single-file operations.

    Usage::

        svc = FileService(api, cache, tiers)
        record = await svc.rename("42", "report-final.pdf")
        result = await svc.download("42", Path("downloads"))
    """

    def __init__(
        self,
        api: BackendClient,
        cache: ListingCache,
        tiers: TierManager,
        download_timeout: float = OBJECT_STORE_TIMEOUT_SECONDS,
        chunk_size: int = TRANSFER_CHUNK_SIZE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api = api
        self._cache = cache
        self._tiers = tiers
        self._chunk_size = chunk_size
        # Presigned GETs go to the object store: no backend auth, no base URL
        self._http = httpx.AsyncClient(timeout=download_timeout, transport=transport)

    async def close(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Rename / delete
    # ------------------------------------------------------------------

    async def rename(self, identifier: str, new_name: str) -> FileRecord:
        """Rename a file and replace its cached record with the backend's.

        Raises:
            ValueError: If *new_name* is empty or whitespace.
            FileOperationError: If the backend refuses the rename.
        """
        new_name = new_name.strip()
        if not new_name:
            raise ValueError("New file name cannot be empty")

        record = await self._tiers.resolve(identifier)
        await self._api.rename(record.object_key, new_name)
        logger.info("Renamed %s to %s", record.display_name, new_name)

        try:
            payload = await self._api.file_details(record.id)
        except FileOperationError as exc:
            logger.warning("Could not re-fetch %s after rename: %s", record.id, exc.message)
            updated = dataclasses.replace(record, display_name=new_name)
        else:
            updated = payload.to_record()
            if payload.id is None:
                updated = dataclasses.replace(updated, id=record.id)

        updated = self._cache.track(updated)
        self._cache.events.publish(
            EventKind.RECORD_RENAMED,
            updated,
            detail={"old_name": record.display_name, "new_name": updated.display_name},
        )
        return updated

    async def delete(self, identifier: str) -> FileRecord:
        """Delete a file; the record leaves the cache only once the backend agrees."""
        record = await self._tiers.resolve(identifier)
        await self._api.delete(record.object_key)
        self._cache.remove(record.id)
        logger.info("Deleted %s", record.object_key)
        return record

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def download(
        self,
        identifier: str,
        destination: Path,
        overwrite: bool = False,
        console: Console | None = None,
    ) -> DownloadResult:
        """Download a file to *destination* (a directory or a file path).

        Archived and restoring files come back as a result with no path
        and the notice to show; nothing is fetched for them.

        Raises:
            FileExistsError: If the target exists and *overwrite* is false.
            FileOperationError: If the link request or the GET fails.
        """
        link = await self._tiers.request_download(identifier)
        if not link.ready or link.url is None:
            logger.info("Download of %s deferred: %s", identifier, link.kind.value)
            return DownloadResult(link)

        target = destination
        if destination.is_dir():
            target = destination / (link.file_name or identifier)
        if target.exists() and not overwrite:
            raise FileExistsError(f"{target} already exists (use --overwrite to replace it)")

        written = await self._fetch(link.url, target, console)
        logger.info("Downloaded %s (%d bytes)", target, written)
        return DownloadResult(link, target, written)

    async def _fetch(self, url: str, target: Path, console: Console | None) -> int:
        partial = target.with_name(target.name + ".part")
        written = 0
        try:
            async with self._http.stream("GET", url) as response:
                if not response.is_success:
                    raise FileOperationError(
                        f"Download failed with HTTP {response.status_code}",
                        response.status_code,
                    )
                total = int(response.headers.get("Content-Length", 0)) or None
                progress = Progress(
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    DownloadColumn(),
                    TransferSpeedColumn(),
                    console=console,
                    disable=console is None,
                )
                with progress, open(partial, "wb") as fh:
                    task = progress.add_task(target.name, total=total)
                    async for chunk in response.aiter_bytes(self._chunk_size):
                        await asyncio.to_thread(fh.write, chunk)
                        written += len(chunk)
                        progress.update(task, completed=written)
        except httpx.TransportError as exc:
            partial.unlink(missing_ok=True)
            raise FileOperationError(
                f"Network error during download ({exc.__class__.__name__})."
            ) from exc
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        partial.replace(target)
        return written

    # ------------------------------------------------------------------
    # Account and command-line upload
    # ------------------------------------------------------------------

    async def account_usage(self) -> dict[str, Any]:
        return await self._api.account_usage()

    async def presign_command(self, local_path: Path) -> str:
        """A ready-to-run ``curl`` command uploading *local_path* directly."""
        url = await self._api.presign_single(local_path.name)
        return f'curl -X PUT -T "{local_path}" "{url}"'
