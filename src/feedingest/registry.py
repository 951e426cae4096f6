"""Element parser registry keyed by dialect, scope, namespace and local name."""

from __future__ import annotations

import logging
from typing import Literal, Optional

from . import props
from .elements import (
    AtomContent,
    CategoryField,
    ChannelLink,
    CopyProperty,
    CopyPropertyIfAbsent,
    DateField,
    ElementParser,
    EnclosureField,
    FeedName,
    FeedNameConstruct,
    GuidField,
    Ignore,
    ImageField,
    LinkOrEnclosure,
    PersonField,
    RawXhtmlBody,
    SourceTag,
    TextConstruct,
    Title,
)

logger = logging.getLogger(__name__)

Dialect = Literal["rss", "atom"]
Scope = Literal["channel", "item"]

_Key = tuple[str, str]


class ElementParserRegistry:
    """Four dispatch tables: (rss|atom) x (channel|item).

    Lookup is case-insensitive on the local name and exact on the namespace
    URI. Registering an existing key replaces the previous parser.
    """

    def __init__(self) -> None:
        self._tables: dict[tuple[str, str], dict[_Key, ElementParser]] = {
            ("rss", "channel"): {},
            ("rss", "item"): {},
            ("atom", "channel"): {},
            ("atom", "item"): {},
        }
        self._rss_namespaces: set[str] = set()

    def _table(self, dialect: str, scope: str) -> dict[_Key, ElementParser]:
        try:
            return self._tables[(dialect, scope)]
        except KeyError:
            raise ValueError(f"unknown dispatch table: {dialect}/{scope}") from None

    def register(
        self,
        dialect: Dialect,
        scope: Scope,
        namespace: str,
        local_name: str,
        parser: ElementParser,
    ) -> None:
        self._table(dialect, scope)[(namespace or "", local_name.lower())] = parser

    def lookup(
        self, dialect: Dialect, scope: Scope, namespace: str, local_name: str
    ) -> Optional[ElementParser]:
        return self._table(dialect, scope).get((namespace or "", local_name.lower()))

    def register_channel_element_parser(
        self, dialect: Dialect, namespace: str, local_name: str, parser: ElementParser
    ) -> None:
        self.register(dialect, "channel", namespace, local_name, parser)

    def register_item_element_parser(
        self, dialect: Dialect, namespace: str, local_name: str, parser: ElementParser
    ) -> None:
        self.register(dialect, "item", namespace, local_name, parser)

    def _register_rss_standard(self, ns: str) -> None:
        item = self._tables[("rss", "item")]
        item[(ns, "description")] = CopyPropertyIfAbsent(props.LONG_BODY)
        item[(ns, "link")] = CopyPropertyIfAbsent(props.LINK)
        item[(ns, "category")] = CopyPropertyIfAbsent(props.RSS_CATEGORY)
        item[(ns, "comments")] = CopyPropertyIfAbsent(props.COMMENT_URL)
        item[(ns, "guid")] = GuidField()
        item[(ns, "pubdate")] = DateField(props.DATE, "rfc822")
        item[(ns, "title")] = Title()
        item[(ns, "enclosure")] = EnclosureField()
        item[(ns, "author")] = PersonField(channel=False)
        item[(ns, "source")] = SourceTag()

        channel = self._tables[("rss", "channel")]
        channel[(ns, "managingeditor")] = PersonField(channel=True)
        channel[(ns, "pubdate")] = DateField(props.PUB_DATE, "rfc822")
        channel[(ns, "title")] = FeedName()
        channel[(ns, "link")] = CopyProperty(props.HOME_PAGE)
        channel[(ns, "description")] = CopyProperty(props.DESCRIPTION)
        channel[(ns, "image")] = ImageField()
        self._rss_namespaces.add(ns)

    def ensure_rss_namespace(self, namespace: str) -> bool:
        """Register the standard RSS elements for ``namespace`` if not done yet.

        Returns True when the namespace was new.
        """
        namespace = namespace or ""
        if namespace in self._rss_namespaces:
            return False
        logger.info("Registering RSS elements for unknown namespace %r", namespace)
        self._register_rss_standard(namespace)
        return True

    @classmethod
    def with_defaults(cls) -> ElementParserRegistry:
        registry = cls()
        for ns in props.RSS_NAMESPACES:
            registry._register_rss_standard(ns)

        rss_item = registry._tables[("rss", "item")]
        rss_item[(props.NS_CONTENT, "encoded")] = CopyProperty(props.LONG_BODY)
        rss_item[(props.NS_DC, "date")] = DateField(props.DATE, "w3c")
        rss_item[(props.NS_DC, "creator")] = PersonField(channel=False)
        rss_item[(props.NS_DC, "subject")] = CopyPropertyIfAbsent(props.RSS_CATEGORY)
        rss_item[(props.NS_XHTML, "body")] = RawXhtmlBody()
        rss_item[(props.NS_SLASH, "comments")] = CopyProperty(props.COMMENT_COUNT, as_int=True)
        rss_item[(props.NS_WFW, "commentrss")] = CopyProperty(props.COMMENT_RSS)
        rss_item[(props.NS_WFW, "comment")] = CopyProperty(props.WFW_COMMENT)

        rss_channel = registry._tables[("rss", "channel")]
        rss_channel[(props.NS_DC, "creator")] = PersonField(channel=True)
        rss_channel[(props.NS_DC, "date")] = DateField(props.PUB_DATE, "w3c")
        rss_channel[(props.NS_SYNDICATION, "updateperiod")] = CopyProperty(props.UPDATE_PERIOD)
        rss_channel[(props.NS_SYNDICATION, "updatefrequency")] = CopyProperty(
            props.UPDATE_FREQUENCY, as_int=True
        )

        atom03, atom10 = props.NS_ATOM03, props.NS_ATOM10
        for ns in props.ATOM_NAMESPACES:
            registry.register("atom", "channel", ns, "link", ChannelLink())
            registry.register("atom", "channel", ns, "author", PersonField(channel=True))
            registry.register("atom", "channel", ns, "logo", CopyProperty(props.IMAGE_URL))
            registry.register("atom", "item", ns, "link", LinkOrEnclosure())
            registry.register("atom", "item", ns, "author", PersonField(channel=False))
            registry.register("atom", "item", ns, "id", CopyProperty(props.GUID))
            registry.register("atom", "item", ns, "category", CategoryField())
            registry.register("atom", "item", ns, "source", Ignore())
        registry.register("atom", "item", props.NS_DC, "subject", CopyPropertyIfAbsent(props.RSS_CATEGORY))

        # Atom 0.3
        registry.register("atom", "channel", atom03, "title", FeedName())
        registry.register("atom", "channel", atom03, "tagline", AtomContent(props.DESCRIPTION, "text"))
        registry.register("atom", "channel", atom03, "modified", DateField(props.PUB_DATE, "w3c"))
        registry.register("atom", "item", atom03, "title", Title())
        registry.register("atom", "item", atom03, "created", DateField(props.DATE, "w3c"))
        registry.register("atom", "item", atom03, "issued", DateField(props.DATE, "w3c"))
        registry.register("atom", "item", atom03, "modified", DateField(props.DATE_MODIFIED, "w3c"))
        registry.register("atom", "item", atom03, "summary", AtomContent(props.SUMMARY, "html"))
        registry.register("atom", "item", atom03, "content", AtomContent(props.LONG_BODY, "html"))

        # Atom 1.0
        registry.register("atom", "channel", atom10, "title", FeedNameConstruct())
        registry.register("atom", "channel", atom10, "subtitle", TextConstruct(props.DESCRIPTION, "text"))
        registry.register("atom", "channel", atom10, "updated", DateField(props.PUB_DATE, "w3c"))
        registry.register("atom", "item", atom10, "title", TextConstruct(props.SUBJECT, "text"))
        registry.register("atom", "item", atom10, "published", DateField(props.DATE, "w3c"))
        registry.register("atom", "item", atom10, "updated", DateField(props.DATE_MODIFIED, "w3c"))
        registry.register("atom", "item", atom10, "summary", TextConstruct(props.SUMMARY, "html"))
        registry.register("atom", "item", atom10, "content", TextConstruct(props.LONG_BODY, "html"))
        return registry
