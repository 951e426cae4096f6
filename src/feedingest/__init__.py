from __future__ import annotations

from typing import Optional

from . import props
from .elements import ElementParser, Extension, ParseContext
from .exceptions import FeedError, FeedIntegrityError, FeedTimeoutError, FeedXMLError
from .job import DownloadProgress, FeedUpdateJob, JobStatus, update_feeds
from .parser import FeedParser
from .registry import ElementParserRegistry
from .settings import FetchSettings
from .store import MemoryStore, Resource, ResourceStore
from .tombstones import TombstoneSet, record_deletion

__all__ = [
    "DownloadProgress",
    "ElementParser",
    "ElementParserRegistry",
    "Extension",
    "FeedError",
    "FeedIntegrityError",
    "FeedParser",
    "FeedTimeoutError",
    "FeedUpdateJob",
    "FeedXMLError",
    "FetchSettings",
    "JobStatus",
    "MemoryStore",
    "ParseContext",
    "Resource",
    "ResourceStore",
    "TombstoneSet",
    "parse_feed",
    "props",
    "record_deletion",
    "update_feeds",
]


def parse_feed(
    data: str | bytes,
    url: str = "",
    *,
    store: Optional[MemoryStore] = None,
    encoding: Optional[str] = None,
    registry: Optional[ElementParserRegistry] = None,
) -> Resource:
    """Parse a feed document into a fresh feed resource of an in-memory store.

    Args:
        data: Feed document (bytes or str)
        url: URL the document was fetched from, used to resolve relative links
        store: Store to parse into; a new :class:`MemoryStore` when omitted

    Returns:
        The feed resource; its items are ``feed.get_links(props.LINK_RSS_ITEM, props.ITEM)``

    Raises:
        FeedXMLError: If the document is not well-formed XML
    """
    store = store if store is not None else MemoryStore()
    feed = store.new_feed(url)
    FeedParser(feed, store, registry).parse(data, encoding)
    return feed
