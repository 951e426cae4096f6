"""Decide whether a parsed item is new, an update of a stored one, or deleted.

One :class:`ItemMerger` lives for one parse pass over one feed. Items the pass
has already created or updated are never matched again: two entries present
in the same document at the same time are never duplicates of each other.
"""

from __future__ import annotations

import datetime
import hashlib
import logging
from typing import Any, Callable, Iterable, Optional

from . import props
from .exceptions import FeedIntegrityError
from .htmltools import default_subject, extract_hrefs, fix_relative_links
from .store import Resource, ResourceStore
from .tombstones import TombstoneSet

logger = logging.getLogger(__name__)

UNIQUE_LINKS_THRESHOLD = 50

ItemCallback = Callable[[Resource], Any]

# Fields refreshed on a stored item when the feed republishes it
_SOFT_PROPS = (
    props.COMMENT_COUNT,
    props.WFW_COMMENT,
    props.SOURCE_TAG,
    props.RSS_CATEGORY,
    props.SOURCE_TAG_URL,
)


def content_hash(subject: str, body: str) -> str:
    digest = hashlib.sha256()
    digest.update(subject.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(body.encode("utf-8"))
    return digest.hexdigest()


def normalize_body(body: str, base_url: str) -> str:
    """Resolve relative links in ``body``; applying it twice changes nothing more."""
    return fix_relative_links(body, base_url) if base_url else body


def _feeds_of(item: Resource) -> list[Resource]:
    return item.get_links(props.LINK_RSS_ITEM, props.FEED)


class ItemMerger:
    def __init__(
        self,
        feed: Resource,
        store: ResourceStore,
        tombstones: Optional[TombstoneSet] = None,
        *,
        parse_time: Optional[datetime.datetime] = None,
        item_added: Iterable[ItemCallback] = (),
    ) -> None:
        self.feed = feed
        self.store = store
        self.tombstones = tombstones if tombstones is not None else TombstoneSet.load(feed)
        self.parse_time = parse_time or datetime.datetime.now().astimezone()
        self.item_added = list(item_added)
        self.added = 0
        self.updated = 0
        self.suppressed = 0
        self._seen: set[int] = set()
        self._unique_links: Optional[bool] = None

    # -- matching -----------------------------------------------------------

    def _feed_items(self) -> list[Resource]:
        return self.feed.get_links(props.LINK_RSS_ITEM, props.ITEM)

    def _belongs_here(self, candidate: Resource, item: Resource) -> bool:
        return (
            candidate is not item
            and candidate.id not in self._seen
            and self.feed in _feeds_of(candidate)
        )

    def _same_prop_item(self, item: Resource, prop: str) -> Optional[Resource]:
        value = item.get_prop(prop)
        if value is None:
            return None
        for candidate in self.store.find(props.ITEM, prop, value):
            if candidate.get_prop(prop) == value and self._belongs_here(candidate, item):
                return candidate
        return None

    def has_unique_links(self) -> bool:
        """Whether every stored item of the feed has a distinct link.

        Computed once per pass. A negative answer is cached on the feed right
        away; a positive one only once the feed has enough items to trust it.
        """
        if self._unique_links is None:
            cached = self.feed.get_prop(props.UNIQUE_LINKS)
            if cached is not None:
                self._unique_links = int(cached) == 1
            else:
                items = self._feed_items()
                links = [i.get_prop(props.LINK) for i in items if i.has_prop(props.LINK)]
                self._unique_links = len(links) == len(set(links))
                if not self._unique_links:
                    self.feed.set_prop(props.UNIQUE_LINKS, 0)
                elif len(items) >= UNIQUE_LINKS_THRESHOLD:
                    self.feed.set_prop(props.UNIQUE_LINKS, 1)
        return self._unique_links

    def _structural_match(self, item: Resource) -> Optional[Resource]:
        if item.has_prop(props.GUID):
            match = self._same_prop_item(item, props.GUID)
            if match is not None:
                logger.debug("Found item with same GUID %s", item.get_text(props.GUID))
            return match
        if self.has_unique_links() and item.has_prop(props.LINK):
            match = self._same_prop_item(item, props.LINK)
            if match is not None:
                logger.debug("Found item with same link %s", item.get_text(props.LINK))
        elif item.has_prop(props.DATE):
            match = self._same_prop_item(item, props.DATE)
            if match is not None:
                logger.debug("Found item with same date %s", item.get_prop(props.DATE))
        else:
            match = self._same_prop_item(item, props.SUBJECT)
            if match is not None:
                logger.debug("Found item with same subject %r", item.get_text(props.SUBJECT))
        return match

    def _prepare_subject_and_body(self, item: Resource) -> Optional[Resource]:
        """Fill in subject, normalized body, size and content hash; return a hash match."""
        body_prop = props.LONG_BODY if item.has_prop(props.LONG_BODY) else props.SUMMARY
        if not item.get_text(props.SUBJECT) and item.get_text(body_prop):
            item.set_prop(props.SUBJECT, default_subject(item.get_text(body_prop)))

        subject = item.get_text(props.SUBJECT)
        base_url = item.get_text(props.LINK_BASE) or self.feed.get_text(props.URL)
        body = normalize_body(item.get_text(body_prop), base_url)
        digest = content_hash(subject, body)

        item.set_prop(props.LONG_BODY, body or None)
        item.set_prop(props.CONTENT_HASH, digest)
        item.set_prop(props.SIZE, len(body) or len(subject))

        for candidate in self.store.find(props.ITEM, props.CONTENT_HASH, digest):
            if (
                self._belongs_here(candidate, item)
                and candidate.get_text(props.SUBJECT) == subject
                and candidate.get_text(props.LONG_BODY) == body
            ):
                return candidate
        return None

    def find_existing(self, item: Resource) -> Optional[Resource]:
        match = self._structural_match(item)
        hash_match = self._prepare_subject_and_body(item)
        if match is None and not self.feed.get_prop(props.ALLOW_EQUAL_POSTS):
            if hash_match is not None:
                logger.debug("Found item by content hash %s", item.get_text(props.CONTENT_HASH))
            match = hash_match
        return match

    # -- merge --------------------------------------------------------------

    def merge(self, item: Resource) -> Optional[Resource]:
        """Merge transient ``item`` into the feed.

        Returns the stored item that now represents it, or None when the item
        was suppressed by a tombstone.
        """
        existing = self.find_existing(item)
        if existing is not None:
            self._update(item, existing)
            return existing
        if self.tombstones.check(item.get_text(props.CONTENT_HASH)):
            logger.debug("Suppressing deleted item %r", item.get_text(props.SUBJECT))
            item.clear_properties()
            self.suppressed += 1
            return None
        return self._add(item)

    def _check_linkage(self, item: Resource) -> None:
        feeds = _feeds_of(item)
        if len(feeds) != 1:
            raise FeedIntegrityError(
                f"Feed-item linkage violation: {item!r} is linked to {len(feeds)} feeds"
            )
        if feeds[0] is not self.feed:
            raise FeedIntegrityError(
                f"Feed-item linkage violation: {item!r} belongs to {feeds[0]!r}, not {self.feed!r}"
            )

    def _update(self, item: Resource, existing: Resource) -> None:
        self._seen.add(existing.id)
        with self.store.batch(existing):
            subject = item.get_text(props.SUBJECT)
            if subject:
                existing.set_prop(props.SUBJECT, subject)
            existing.set_prop(props.LONG_BODY, item.get_prop(props.LONG_BODY))
            existing.set_prop(props.CONTENT_HASH, item.get_prop(props.CONTENT_HASH))
            existing.set_prop(props.SIZE, item.get_prop(props.SIZE))
            for prop in _SOFT_PROPS:
                if item.has_prop(prop):
                    existing.set_prop(prop, item.get_prop(prop))
            if not existing.has_prop(props.ENCLOSURE_STATE) and item.has_prop(
                props.ENCLOSURE_STATE
            ):
                existing.set_prop(props.ENCLOSURE_STATE, item.get_prop(props.ENCLOSURE_STATE))
        item.clear_properties()
        self._check_linkage(existing)
        self.updated += 1

    def _add(self, item: Resource) -> Resource:
        with self.store.batch(item):
            self.store.commit(item)
            self._seen.add(item.id)
            index = int(self.feed.get_prop(props.LAST_ITEM_INDEX, 0)) + 1
            item.set_prop(props.INDEX_IN_FEED, index)
            self.feed.set_prop(props.LAST_ITEM_INDEX, index)
            self.feed.add_link(props.LINK_RSS_ITEM, item)

            self._set_date(item)
            self._set_author(item)
            self._extract_links_and_replies(item)
            self._set_comment_links(item)
            for category in self.feed.get_links(props.LINK_CATEGORY, props.CATEGORY):
                item.add_link(props.LINK_CATEGORY, category)

            item.set_prop(props.IS_UNREAD, True)
            item.set_prop(props.LONG_BODY_IS_HTML, True)
            item.set_prop(props.DOWNLOAD_DATE, datetime.datetime.now().astimezone())
        self._check_linkage(item)
        self.added += 1
        logger.debug("Added item #%s %r", index, item.get_text(props.SUBJECT))

        for callback in self.item_added:
            try:
                callback(item)
            except FeedIntegrityError:
                raise
            except Exception:
                logger.exception("item_added callback %r failed", callback)
        return item

    def _set_date(self, item: Resource) -> None:
        if item.has_prop(props.DATE):
            return
        date = (
            item.get_prop(props.DATE_MODIFIED)
            or self.feed.get_prop(props.PUB_DATE)
            or self.parse_time
        )
        item.set_prop(props.DATE, date)

    def _set_author(self, item: Resource) -> None:
        author = item.get_link(props.LINK_FROM)
        if author is None:
            contact = self.feed.get_link(props.LINK_WEBLOG, props.CONTACT)
            item.add_link(props.LINK_FROM, contact if contact is not None else self.feed)
        elif not self.feed.has_prop(props.AUTHOR):
            self.feed.set_prop(props.AUTHOR, author.display_name)

    def _extract_links_and_replies(self, item: Resource) -> None:
        link = item.get_text(props.LINK)
        if link:
            for reply in self.store.find(props.ITEM, props.LINK_LIST, link):
                if reply is not item:
                    reply.add_link(props.LINK_LINKED_POST, item)

        hrefs = extract_hrefs(item.get_text(props.LONG_BODY))
        if not hrefs:
            return
        item.set_prop(props.LINK_LIST, hrefs)
        for href in hrefs:
            for target in self.store.find(props.ITEM, props.LINK, href):
                if target is not item:
                    item.add_link(props.LINK_LINKED_POST, target)

    def _set_comment_links(self, item: Resource) -> None:
        # A comment feed links to the item (and the feed) whose comments it carries.
        for comment_item in self.feed.get_links_from(props.LINK_ITEM_COMMENT_FEED, props.ITEM)[:1]:
            item.add_link(props.LINK_ITEM_COMMENT, comment_item)
        for parent_feed in self.feed.get_links_from(props.LINK_FEED_COMMENT_TO_FEED, props.FEED)[:1]:
            item.add_link(props.LINK_FEED_COMMENT, parent_feed)
