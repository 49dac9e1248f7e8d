"""Shared listing event stream.

Components that change the listing (upload, rename, delete, tier changes,
the restoration refresher) publish here; views subscribe.  No component
reads another's state through globals.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from reactivex import Observable
from reactivex.abc import DisposableBase
from reactivex.subject import Subject

from sdrive.models import FileRecord

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    PAGE_LOADED = "page_loaded"
    RECORD_UPDATED = "record_updated"
    RECORD_RENAMED = "record_renamed"
    RECORD_REMOVED = "record_removed"
    BATCH_UPLOADED = "batch_uploaded"
    RESTORE_WATCH_EXPIRED = "restore_watch_expired"


@dataclass(frozen=True)
class ListingEvent:
    """One change to the listing.

    ``record`` is the record after the change (``None`` for removals and
    page loads); ``detail`` carries kind-specific extras such as the old
    name of a renamed file.
    """

    kind: EventKind
    file_id: str | None = None
    record: FileRecord | None = None
    detail: dict[str, Any] = field(default_factory=dict)


class ListingEvents:
    """Thin wrapper over a ReactiveX ``Subject`` of :class:`ListingEvent`."""

    def __init__(self) -> None:
        self._subject: Subject[ListingEvent] = Subject()
        self._closed = False

    @property
    def stream(self) -> Observable[ListingEvent]:
        return self._subject

    def publish(
        self,
        kind: EventKind,
        record: FileRecord | None = None,
        file_id: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        if self._closed:
            logger.debug("Dropping %s event after close", kind.value)
            return
        if file_id is None and record is not None:
            file_id = record.id
        self._subject.on_next(
            ListingEvent(kind=kind, file_id=file_id, record=record, detail=detail or {})
        )

    def subscribe(
        self,
        on_event: Callable[[ListingEvent], None],
        kinds: set[EventKind] | None = None,
    ) -> DisposableBase:
        """Subscribe *on_event*, optionally only to *kinds*.

        Returns the subscription; dispose it to unsubscribe.
        """
        if kinds is None:
            return self._subject.subscribe(on_next=on_event)

        def filtered(event: ListingEvent) -> None:
            if event.kind in kinds:
                on_event(event)

        return self._subject.subscribe(on_next=filtered)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._subject.on_completed()
