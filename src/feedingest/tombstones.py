"""Content hashes of items the user deleted, kept so they are not re-created.

A hash stays tombstoned only while the feed keeps publishing the item: every
parse pass rewrites the list keeping just the hashes that were seen again.
"""

from __future__ import annotations

import logging
from typing import Iterable

from . import props
from .store import Resource, ResourceStore

logger = logging.getLogger(__name__)


class TombstoneSet:
    def __init__(self, feed: Resource, hashes: Iterable[str] = ()) -> None:
        self.feed = feed
        self._hashes: list[str] = list(dict.fromkeys(hashes))
        self._members = set(self._hashes)
        self._seen: set[str] = set()

    @classmethod
    def load(cls, feed: Resource) -> TombstoneSet:
        return cls(feed, feed.get_prop(props.DELETED_ITEM_HASHES) or ())

    def __contains__(self, content_hash: object) -> bool:
        return content_hash in self._members

    def __len__(self) -> int:
        return len(self._hashes)

    def check(self, content_hash: str) -> bool:
        """Return True if ``content_hash`` is tombstoned, marking it as still published."""
        if content_hash in self._members:
            self._seen.add(content_hash)
            return True
        return False

    def save(self) -> None:
        """Persist the hashes seen during this pass and forget the rest."""
        kept = [h for h in self._hashes if h in self._seen]
        dropped = len(self._hashes) - len(kept)
        if dropped:
            logger.debug("Dropping %d stale tombstones from %r", dropped, self.feed)
        self.feed.set_prop(props.DELETED_ITEM_HASHES, kept or None)
        self._hashes = kept
        self._members = set(kept)


def record_deletion(store: ResourceStore, feed: Resource, item: Resource) -> None:
    """Delete ``item`` on the user's behalf and tombstone its content hash."""
    content_hash = item.get_text(props.CONTENT_HASH)
    if content_hash:
        with store.batch(feed):
            hashes = list(feed.get_prop(props.DELETED_ITEM_HASHES) or [])
            if content_hash not in hashes:
                hashes.append(content_hash)
            feed.set_prop(props.DELETED_ITEM_HASHES, hashes)
    else:
        logger.warning("Deleting %r without a content hash; it may reappear", item)
    store.delete(item)
