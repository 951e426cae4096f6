"""Walk an RSS or Atom document and merge its items into a feed."""

from __future__ import annotations

import datetime
import logging
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional, Protocol
from urllib.parse import urljoin

from . import props
from .authors import AuthorResolver
from .elements import ParseContext, local_name, namespace
from .exceptions import FeedIntegrityError
from .merge import ItemMerger
from .prepare import parse_document
from .registry import Dialect, ElementParserRegistry, Scope
from .store import Resource, ResourceStore
from .tombstones import TombstoneSet

if TYPE_CHECKING:
    from lxml.etree import _Element

logger = logging.getLogger(__name__)

_XML_BASE_ATTR = f"{{{props.NS_XML}}}base"

ItemCallback = Callable[[Resource], Any]


class ShutdownSignal(Protocol):
    def is_set(self) -> bool: ...


def _find_channel(root: _Element) -> tuple[Optional[_Element], Optional[Dialect]]:
    for element in root.iter():
        if not isinstance(element.tag, str):
            continue
        name = local_name(element).lower()
        if name == "channel":
            return element, "rss"
        if name == "feed" and namespace(element) in props.ATOM_NAMESPACES:
            return element, "atom"
    return None, None


class FeedParser:
    """Parses documents for one feed into its store.

    ``item_parsed`` callbacks run for every transient item before it is
    merged; a callback vetoes the item by deleting it from the store.
    ``item_added`` callbacks run for every newly created stored item.
    """

    def __init__(
        self,
        feed: Resource,
        store: ResourceStore,
        registry: Optional[ElementParserRegistry] = None,
        *,
        shutdown: Optional[ShutdownSignal] = None,
    ) -> None:
        self.feed = feed
        self.store = store
        self.registry = registry if registry is not None else ElementParserRegistry.with_defaults()
        self.shutdown = shutdown
        self.found_channel = False
        self.interrupted = False
        self.item_parsed: list[ItemCallback] = []
        self.item_added: list[ItemCallback] = []
        self.merger: Optional[ItemMerger] = None
        self._live_item: Optional[Resource] = None
        self._context = ParseContext(store=store, feed=feed, authors=AuthorResolver(store))

    def parse(
        self, data: str | bytes, encoding: Optional[str] = None, parse_items: bool = True
    ) -> bool:
        """Parse ``data`` and merge its items; returns whether a channel was found.

        Raises:
            FeedXMLError: when the document is not well-formed XML.
        """
        root = parse_document(data, encoding)
        channel, dialect = _find_channel(root)
        if channel is None or dialect is None:
            logger.info("No RSS channel or Atom feed element in document for %r", self.feed)
            return False
        self.found_channel = True

        xml_base = channel.get(_XML_BASE_ATTR)
        if xml_base:
            feed_url = self.feed.get_text(props.URL)
            self.feed.set_prop(props.LINK_BASE, urljoin(feed_url, xml_base) if feed_url else xml_base)

        if dialect == "rss":
            self.registry.ensure_rss_namespace(namespace(channel))
            item_name = "item"
        else:
            item_name = "entry"

        with self.store.batch(self.feed):
            for child in channel:
                if not isinstance(child.tag, str):
                    continue
                if self._is_item(child, item_name, dialect, channel):
                    break
                self._dispatch(dialect, "channel", self.feed, child)

        if not parse_items:
            return True

        tombstones = TombstoneSet.load(self.feed)
        self.merger = ItemMerger(
            self.feed,
            self.store,
            tombstones,
            parse_time=datetime.datetime.now().astimezone(),
            item_added=self.item_added,
        )
        for element in self._iter_items(channel, item_name, dialect):
            if self.shutdown is not None and self.shutdown.is_set():
                logger.info("Shutdown requested, stopping parse of %r", self.feed)
                self.interrupted = True
                break
            self._parse_item(element, dialect, self.merger)

        if not self.interrupted:
            tombstones.save()
        logger.debug(
            "Parsed %r: %d added, %d updated, %d suppressed",
            self.feed,
            self.merger.added,
            self.merger.updated,
            self.merger.suppressed,
        )
        return True

    def _is_item(self, element: _Element, item_name: str, dialect: str, channel: _Element) -> bool:
        if local_name(element).lower() != item_name:
            return False
        ns = namespace(element)
        if dialect == "atom":
            return ns == namespace(channel)
        return ns in props.RSS_NAMESPACES or ns == namespace(channel)

    def _iter_items(self, channel: _Element, item_name: str, dialect: str) -> Iterator[_Element]:
        """Items inside the channel, then items following it in document order."""

        def walk(element: _Element) -> Iterator[_Element]:
            if not isinstance(element.tag, str):
                return
            if self._is_item(element, item_name, dialect, channel):
                yield element
                return
            for child in element:
                yield from walk(child)

        for child in channel:
            yield from walk(child)
        node: Optional[_Element] = channel
        while node is not None:
            for sibling in node.itersiblings():
                yield from walk(sibling)
            node = node.getparent()

    def _dispatch(self, dialect: Dialect, scope: Scope, target: Resource, element: _Element) -> None:
        ns = namespace(element)
        name = local_name(element)
        parser = self.registry.lookup(dialect, scope, ns, name)
        if parser is None:
            logger.debug("No %s %s handler for {%s}%s", dialect, scope, ns, name)
            return
        try:
            parser.parse(target, element, self._context)
        except FeedIntegrityError:
            raise
        except Exception:
            logger.exception("Handler %r failed on {%s}%s", parser, ns, name)

    def _parse_item(self, element: _Element, dialect: Dialect, merger: ItemMerger) -> None:
        if self._live_item is not None:
            raise FeedIntegrityError("A transient item is still live while a new one is requested")
        item = self.store.new_transient(props.ITEM)
        self._live_item = item
        try:
            xml_base = element.get(_XML_BASE_ATTR)
            if xml_base:
                channel_base = self.feed.get_text(props.LINK_BASE)
                item.set_prop(props.LINK_BASE, urljoin(channel_base, xml_base) if channel_base else xml_base)

            for child in element:
                if isinstance(child.tag, str):
                    self._dispatch(dialect, "item", item, child)

            for callback in self.item_parsed:
                try:
                    callback(item)
                except FeedIntegrityError:
                    raise
                except Exception:
                    logger.exception("item_parsed callback %r failed", callback)
            if item.deleted:
                logger.debug("Item %r vetoed by an item_parsed listener", item.get_text(props.SUBJECT))
                item.clear_properties()
                return

            merger.merge(item)
        finally:
            self._live_item = None
