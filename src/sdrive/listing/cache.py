"""In-memory, page-oriented view of the file listing.

The upload orchestrator, the tier manager and the restoration refresher
all read and patch records here.  Every mutation that changes a record is
published on :class:`~sdrive.listing.events.ListingEvents`.
"""

from __future__ import annotations

import dataclasses
import logging

from sdrive.api.client import BackendClient
from sdrive.constants import DEFAULT_PER_PAGE
from sdrive.listing.events import EventKind, ListingEvents
from sdrive.models import FileRecord, ListingPage, StorageTier

logger = logging.getLogger(__name__)


class ListingCache:
    """Records of the currently loaded listing page, keyed by file id.

    Usage::

        cache = ListingCache(api)
        await cache.load_page(2)
        record = cache.get("42")
        cache.patch("42", tier=StorageTier.RESTORING)
    """

    def __init__(
        self,
        api: BackendClient,
        per_page: int = DEFAULT_PER_PAGE,
        events: ListingEvents | None = None,
    ) -> None:
        self._api = api
        self._per_page = per_page
        self.events = events or ListingEvents()
        self._records: dict[str, FileRecord] = {}
        self._page = 1
        self._total = 0
        self._total_pages = 1
        self._loaded = False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_page(self, page: int = 1, use_cache: bool = False) -> ListingPage:
        """Fetch *page* from the backend and make it the current page."""
        if page < 1:
            raise ValueError(f"Page numbers start at 1, got {page}")
        response = await self._api.list_files(
            page=page, per_page=self._per_page, use_cache=use_cache
        )
        listing = response.to_page(page, self._per_page)

        self._records = {r.id: r for r in listing.files}
        self._page = page
        self._total = listing.total
        self._total_pages = listing.total_pages
        self._loaded = True
        logger.debug(
            "Loaded page %d/%d (%d files)", page, listing.total_pages, len(listing.files)
        )
        self.events.publish(
            EventKind.PAGE_LOADED,
            detail={"page": page, "total": listing.total, "total_pages": listing.total_pages},
        )
        return listing

    async def refresh(self) -> ListingPage:
        """Reload the current page, bypassing the backend's listing cache."""
        return await self.load_page(self._page, use_cache=False)

    def invalidate(self) -> None:
        """Drop every record; the next read must reload."""
        self._records.clear()
        self._loaded = False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def page(self) -> int:
        return self._page

    @property
    def per_page(self) -> int:
        return self._per_page

    @property
    def total(self) -> int:
        return self._total

    @property
    def total_pages(self) -> int:
        return self._total_pages

    @property
    def records(self) -> list[FileRecord]:
        return list(self._records.values())

    def get(self, identifier: str) -> FileRecord | None:
        """Look a record up by id, falling back to object key."""
        record = self._records.get(identifier)
        if record is not None:
            return record
        for candidate in self._records.values():
            if candidate.matches(identifier):
                return candidate
        return None

    def contains(self, file_id: str) -> bool:
        return file_id in self._records

    def in_tier(self, tier: StorageTier) -> list[FileRecord]:
        return [r for r in self._records.values() if r.tier is tier]

    def search(self, text: str) -> list[FileRecord]:
        """Case-insensitive substring match on display names."""
        needle = text.strip().lower()
        if not needle:
            return self.records
        return [r for r in self._records.values() if needle in r.display_name.lower()]

    def total_space_used(self) -> int:
        """Sum of known sizes on the current page, in bytes."""
        return sum(r.size_bytes or 0 for r in self._records.values())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def track(self, record: FileRecord) -> FileRecord:
        """Add a record fetched outside the current page (or replace it)."""
        if record.id in self._records:
            self.replace(record)
        else:
            self._records[record.id] = record
        return self._records[record.id]

    def replace(self, record: FileRecord) -> bool:
        """Swap in *record* for the cached one with the same id.

        Returns ``True`` when the record changed.  Records no longer in the
        cache are not re-added.
        """
        current = self._records.get(record.id)
        if current is None:
            logger.debug("Not replacing %s: no longer cached", record.id)
            return False
        if current == record:
            return False
        self._records[record.id] = record
        self.events.publish(EventKind.RECORD_UPDATED, record)
        return True

    def patch(self, identifier: str, **changes: object) -> FileRecord:
        """Apply field *changes* to a cached record in place.

        Raises:
            KeyError: If no cached record matches *identifier*.
        """
        current = self.get(identifier)
        if current is None:
            raise KeyError(identifier)
        updated = dataclasses.replace(current, **changes)
        self.replace(updated)
        return self._records[updated.id]

    def remove(self, identifier: str) -> FileRecord | None:
        record = self.get(identifier)
        if record is None:
            return None
        del self._records[record.id]
        if self._total:
            self._total -= 1
        self.events.publish(EventKind.RECORD_REMOVED, file_id=record.id)
        return record
