"""Periodic reconciliation of files that are being restored.

Restoration completes on the backend hours after it was requested and
nothing is pushed to the client, so a single repeating timer re-fetches
the metadata of every cached ``restoring`` record.  Each tick starts one
short-lived task per file and does not wait for it; a file whose previous
refresh is still in flight is skipped, never queued twice.

Watches are bounded: a file still restoring after ``watch_timeout``
seconds stops being polled and a ``RESTORE_WATCH_EXPIRED`` event is
published.  :meth:`RestorationRefresher.watch` re-arms it.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable

from sdrive.api.client import BackendClient
from sdrive.api.exceptions import BackendError, SessionExpiredError
from sdrive.constants import REFRESH_INTERVAL_SECONDS, RESTORE_WATCH_TIMEOUT_SECONDS
from sdrive.listing.cache import ListingCache
from sdrive.listing.events import EventKind
from sdrive.models import StorageTier
from sdrive.tiers.fsm import observed_transition

logger = logging.getLogger(__name__)


class RestorationRefresher:
    """Polls restoring files until they leave the ``restoring`` tier.

    Usage::

        async with RestorationRefresher(api, cache) as refresher:
            ...  # ticks every 60 s while the listing is shown

    Args:
        api: Backend client (single-file metadata refresh).
        cache: Listing cache to read restoring records from and patch.
        interval: Seconds between ticks.
        watch_timeout: Seconds a file is polled before giving up on it.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        api: BackendClient,
        cache: ListingCache,
        interval: float = REFRESH_INTERVAL_SECONDS,
        watch_timeout: float = RESTORE_WATCH_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api = api
        self._cache = cache
        self._interval = interval
        self._watch_timeout = watch_timeout
        self._clock = clock

        self._in_flight: dict[str, asyncio.Task[None]] = {}
        self._watch_started: dict[str, float] = {}
        self._expired: set[str] = set()
        self._loop_task: asyncio.Task[None] | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        """Start ticking. Must be called from a running event loop."""
        if self.running:
            return
        self._closed = False
        self._loop_task = asyncio.create_task(self._run(), name="sdrive-restore-refresher")
        logger.debug("Restoration refresher started (every %.0fs)", self._interval)

    async def stop(self) -> None:
        """Stop ticking and drop every in-flight refresh without applying it."""
        self._closed = True
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        pending = list(self._in_flight.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._in_flight.clear()
        logger.debug("Restoration refresher stopped")

    async def __aenter__(self) -> RestorationRefresher:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.stop()

    async def _run(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(self._interval)

    # ------------------------------------------------------------------
    # Watches
    # ------------------------------------------------------------------

    def watch(self, file_id: str) -> None:
        """(Re-)arm the restoration watch for *file_id*."""
        self._watch_started[file_id] = self._clock()
        self._expired.discard(file_id)

    @property
    def in_flight_ids(self) -> set[str]:
        return set(self._in_flight)

    @property
    def expired_ids(self) -> set[str]:
        return set(self._expired)

    def is_watching(self, file_id: str) -> bool:
        record = self._cache.get(file_id)
        return (
            record is not None
            and record.tier is StorageTier.RESTORING
            and record.id not in self._expired
        )

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self) -> list[str]:
        """Start a refresh for every restoring file not already refreshing.

        Returns the ids refreshed by this tick.  Does not wait for them.
        """
        now = self._clock()
        restoring = self._cache.in_tier(StorageTier.RESTORING)
        restoring_ids = {r.id for r in restoring}

        # Forget watches for files that left the tier (or the page)
        for file_id in list(self._watch_started):
            if file_id not in restoring_ids:
                del self._watch_started[file_id]
                self._expired.discard(file_id)

        started: list[str] = []
        for record in restoring:
            file_id = record.id
            if file_id in self._expired:
                continue
            since = self._watch_started.setdefault(file_id, now)
            if now - since >= self._watch_timeout:
                self._expired.add(file_id)
                logger.warning(
                    "%s still restoring after %.0fs, no longer polling it",
                    record.display_name,
                    now - since,
                )
                self._cache.events.publish(
                    EventKind.RESTORE_WATCH_EXPIRED,
                    record,
                    detail={"watched_seconds": now - since},
                )
                continue
            if file_id in self._in_flight:
                logger.debug("Refresh of %s still in flight, skipping", file_id)
                continue

            task = asyncio.create_task(self._refresh_one(file_id))
            self._in_flight[file_id] = task
            task.add_done_callback(lambda t, fid=file_id: self._forget(fid, t))
            started.append(file_id)
        return started

    async def drain(self) -> None:
        """Wait for the refreshes currently in flight."""
        pending = list(self._in_flight.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _forget(self, file_id: str, task: asyncio.Task[None]) -> None:
        if self._in_flight.get(file_id) is task:
            del self._in_flight[file_id]

    async def _refresh_one(self, file_id: str) -> None:
        try:
            payload = await self._api.refresh_file_metadata(file_id)
        except SessionExpiredError:
            logger.warning("Session expired while refreshing %s", file_id)
            return
        except BackendError as exc:
            logger.warning("Refresh of %s failed: %s", file_id, exc.message)
            return

        if self._closed:
            logger.debug("Discarding refresh of %s: refresher stopped", file_id)
            return
        previous = self._cache.get(file_id)
        if previous is None:
            logger.debug("Discarding refresh of %s: record no longer cached", file_id)
            return

        record = payload.to_record()
        if record.id != previous.id:
            record = dataclasses.replace(record, id=previous.id)

        if self._cache.replace(record):
            event = observed_transition(previous.tier, record.tier)
            if event is not None:
                logger.info(
                    "%s: %s -> %s (%s)",
                    record.display_name,
                    previous.tier.value,
                    record.tier.value,
                    event,
                )
