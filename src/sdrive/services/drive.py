"""Composition root: one object owning every client-side component.

``Drive`` builds the backend client, listing cache, tier manager,
restoration refresher, upload pipeline and file service around a single
configuration and session, and tears them down together.
"""

from __future__ import annotations

import logging
import mimetypes
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import httpx

from sdrive.api.client import BackendClient
from sdrive.config import load_client_config
from sdrive.listing.cache import ListingCache
from sdrive.listing.events import ListingEvents
from sdrive.models import BatchUploadResult, ClientConfig, PendingUpload, StorageTier
from sdrive.services.files import FileService
from sdrive.session import SessionStore
from sdrive.tiers.manager import TierManager
from sdrive.tiers.refresher import RestorationRefresher
from sdrive.upload.orchestrator import UploadOrchestrator
from sdrive.upload.presign import DEFAULT_CONTENT_TYPE, PresignClient
from sdrive.upload.progress import UploadProgressTracker
from sdrive.upload.transfer import ObjectTransferExecutor

logger = logging.getLogger(__name__)


def pending_from_path(path: Path, tier: StorageTier = StorageTier.STANDARD) -> PendingUpload:
    """Describe a local file as a :class:`PendingUpload`.

    Raises:
        FileNotFoundError: If *path* does not exist or is not a file.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Not a file: {path}")
    mime_type, _ = mimetypes.guess_type(path.name)
    return PendingUpload(
        local_name=path.name,
        byte_size=path.stat().st_size,
        mime_type=mime_type or DEFAULT_CONTENT_TYPE,
        requested_tier=tier,
        source=path,
    )


class Drive:
    """The SDrive client.

    Usage::

        async with Drive() as drive:
            await drive.cache.load_page(1)
            result = await drive.upload_paths([Path("a.pdf"), Path("b.png")])
            await drive.tiers.request_tier_change("42", StorageTier.ARCHIVE)

    Args:
        config: Client configuration; loaded from ``config/sdrive.json``
            and the environment when omitted.
        session: Session store; keyring-backed by default.
        transport: httpx transport for the backend (tests).
        object_store_transport: httpx transport for presigned PUT/GET (tests).
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        session: SessionStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        object_store_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_client_config()
        self.session = session or SessionStore()
        self.api = BackendClient(self.config, self.session, transport=transport)
        self.events = ListingEvents()
        self.cache = ListingCache(self.api, self.config.per_page, self.events)
        self.refresher = RestorationRefresher(
            self.api,
            self.cache,
            interval=self.config.refresh_interval_seconds,
            watch_timeout=self.config.restore_watch_timeout_seconds,
        )
        self.tiers = TierManager(self.api, self.cache, self.refresher)
        self.presign = PresignClient(self.api)
        self.transfer = ObjectTransferExecutor(
            timeout=self.config.object_store_timeout_seconds,
            chunk_size=self.config.transfer_chunk_size,
            transport=object_store_transport,
        )
        self.files = FileService(
            self.api,
            self.cache,
            self.tiers,
            download_timeout=self.config.object_store_timeout_seconds,
            chunk_size=self.config.transfer_chunk_size,
            transport=object_store_transport,
        )
        self.session.add_invalidation_listener(self._on_session_invalidated)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        await self.refresher.stop()
        self.events.close()
        await self.transfer.close()
        await self.files.close()
        await self.api.close()

    async def __aenter__(self) -> Drive:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    def _on_session_invalidated(self) -> None:
        # Records fetched under the old session must not be shown or polled
        self.cache.invalidate()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> None:
        token = await self.api.login(email, password)
        self.session.login(token)
        logger.info("Logged in as %s", email)

    async def register(self, email: str, password: str) -> dict[str, Any]:
        return await self.api.register(email, password)

    async def verify_email(self, token: str) -> None:
        await self.api.verify_email(token)

    def logout(self) -> None:
        self.session.logout()
        self.cache.invalidate()

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def orchestrator(
        self,
        progress: UploadProgressTracker | None = None,
        on_progress: Callable[[float], None] | None = None,
    ) -> UploadOrchestrator:
        return UploadOrchestrator(
            self.presign,
            self.transfer,
            self.api,
            self.cache,
            max_concurrent_transfers=self.config.max_concurrent_transfers,
            progress=progress,
            on_progress=on_progress,
        )

    async def upload(
        self,
        uploads: Sequence[PendingUpload],
        progress: UploadProgressTracker | None = None,
    ) -> BatchUploadResult:
        return await self.orchestrator(progress).upload_batch(uploads)

    async def upload_paths(
        self,
        paths: Sequence[Path],
        tier: StorageTier | None = None,
        progress: UploadProgressTracker | None = None,
    ) -> BatchUploadResult:
        """Upload local files, all requested in *tier* (config default if omitted)."""
        if tier is None:
            tier = StorageTier.from_wire(self.config.default_tier)
        uploads = [pending_from_path(p, tier) for p in paths]
        return await self.upload(uploads, progress)
