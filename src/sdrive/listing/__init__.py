"""File listing cache and its shared event stream."""

from sdrive.listing.cache import ListingCache
from sdrive.listing.events import EventKind, ListingEvent, ListingEvents

__all__ = ["EventKind", "ListingCache", "ListingEvent", "ListingEvents"]
