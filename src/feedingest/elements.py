"""Element parsers: the units the registry dispatches feed elements to.

Each parser receives the resource being populated (the feed for channel
elements, the transient item for item elements), the lxml element, and the
:class:`ParseContext` of the running parse. Parsers write properties and may
create and link auxiliary resources such as contacts.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Literal, Optional
from urllib.parse import urljoin

from lxml import etree

from . import props
from .authors import AuthorResolver
from .dates import parse_rfc822_date, parse_w3c_date
from .htmltools import html_decode, html_encode, normalize_whitespace, strip_html
from .store import Resource, ResourceStore

if TYPE_CHECKING:
    from lxml.etree import _Element

logger = logging.getLogger(__name__)

_XHTML_PREFIX = f"{{{props.NS_XHTML}}}"
_RDF_RESOURCE_ATTR = f"{{{props.NS_RDF}}}resource"
_HTML_TYPES = frozenset({"html", "text/html"})
_XHTML_TYPES = frozenset({"xhtml", "application/xhtml+xml"})

_TextFormat = Literal["text", "html"]
_DateGrammar = Literal["rfc822", "w3c"]


@dataclass
class ParseContext:
    store: ResourceStore
    feed: Resource
    authors: AuthorResolver


def local_name(element: _Element) -> str:
    return etree.QName(element).localname


def namespace(element: _Element) -> str:
    return etree.QName(element).namespace or ""


def inner_xml(element: _Element) -> str:
    """Serialize the content of ``element`` without its own tag.

    Elements in the XHTML namespace are written without a namespace so the
    result reads as ordinary HTML.
    """
    clone = copy.deepcopy(element)
    clone.tail = None
    for node in clone.iter():
        if isinstance(node.tag, str) and node.tag.startswith(_XHTML_PREFIX):
            node.tag = node.tag[len(_XHTML_PREFIX) :]
    etree.cleanup_namespaces(clone)
    parts = [html_encode(clone.text or "")]
    for child in clone:
        parts.append(etree.tostring(child, encoding="unicode", with_tail=True))
    return "".join(parts)


def element_text(element: _Element) -> str:
    """Text of a simple element, or its inner markup when it has child elements."""
    if len(element) == 0:
        return element.text or ""
    return inner_xml(element)


def _child_text(element: _Element, *names: str) -> Optional[str]:
    for child in element:
        if isinstance(child.tag, str) and local_name(child).lower() in names:
            text = (child.text or "").strip()
            if text:
                return text
    return None


def _base_url(target: Resource, context: ParseContext) -> str:
    return target.get_text(props.LINK_BASE) or context.feed.get_text(props.LINK_BASE)


def _resolve(href: str, target: Resource, context: ParseContext) -> str:
    base = _base_url(target, context)
    return urljoin(base, href) if base else href


def _set_feed_name(feed: Resource, value: str) -> None:
    feed.set_prop(props.ORIGINAL_NAME, value)
    if not feed.get_text(props.NAME):
        feed.set_prop(props.NAME, value)


def _parse_int(value: str, element: _Element) -> Optional[int]:
    try:
        return int(value.strip())
    except ValueError:
        logger.warning("Ignoring non-numeric <%s> value %r", local_name(element), value)
        return None


class ElementParser:
    """Base class for everything the registry dispatches to."""

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        raise NotImplementedError


class CopyProperty(ElementParser):
    """Copy the element text into ``prop``, replacing any earlier value."""

    def __init__(self, prop: str, *, as_int: bool = False) -> None:
        self.prop = prop
        self.as_int = as_int

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.prop!r})"

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        text = element_text(element).strip()
        if not text:
            return
        if self.as_int:
            value = _parse_int(text, element)
            if value is not None:
                target.set_prop(self.prop, value)
        else:
            target.set_prop(self.prop, text)


class CopyPropertyIfAbsent(CopyProperty):
    """First write wins."""

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        if not target.has_prop(self.prop):
            super().parse(target, element, context)


class FeedName(ElementParser):
    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        value = normalize_whitespace(html_decode(element_text(element))).strip()
        if value:
            _set_feed_name(target, value)


class Title(ElementParser):
    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        value = normalize_whitespace(html_decode(element.text or "")).strip()
        if value:
            target.set_prop(props.SUBJECT, value)


class GuidField(ElementParser):
    """RSS ``<guid>``; a permalink GUID doubles as the item link."""

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        guid = (element.text or "").strip()
        if not guid:
            return
        target.set_prop(props.GUID, guid)
        is_permalink = element.get("isPermaLink", "true").strip().lower() != "false"
        if is_permalink and "://" in guid and not target.has_prop(props.LINK):
            target.set_prop(props.LINK, guid)


class SourceTag(ElementParser):
    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        name = (element.text or "").strip()
        if name:
            target.set_prop(props.SOURCE_TAG, name)
        url = element.get("url")
        if url:
            target.set_prop(props.SOURCE_TAG_URL, url.strip())


def _set_enclosure(
    target: Resource, url: str, length: Optional[str], mime_type: Optional[str], element: _Element
) -> None:
    target.set_prop(props.ENCLOSURE_URL, url)
    if length:
        size = _parse_int(length, element)
        if size is not None:
            target.set_prop(props.ENCLOSURE_SIZE, max(size, 0))
    if mime_type:
        target.set_prop(props.ENCLOSURE_TYPE, mime_type.strip())
    target.set_prop(props.ENCLOSURE_STATE, props.ENCLOSURE_NOT_DOWNLOADED)


class EnclosureField(ElementParser):
    """RSS ``<enclosure url=... length=... type=...>``."""

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        url = (element.get("url") or "").strip()
        if not url:
            logger.warning("Ignoring <enclosure> without url")
            return
        _set_enclosure(target, url, element.get("length"), element.get("type"), element)


class ImageField(ElementParser):
    """Channel ``<image>`` with nested title/url/link, or an RDF resource reference."""

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        url = _child_text(element, "url") or element.get(_RDF_RESOURCE_ATTR)
        if url:
            target.set_prop(props.IMAGE_URL, url.strip())
        title = _child_text(element, "title")
        if title:
            target.set_prop(props.IMAGE_TITLE, html_decode(title))
        link = _child_text(element, "link")
        if link:
            target.set_prop(props.IMAGE_LINK, link)


class DateField(ElementParser):
    """Parse a date with one of the two feed grammars; bad dates are logged and skipped."""

    _grammars: dict[str, Callable[[str], object]] = {
        "rfc822": parse_rfc822_date,
        "w3c": parse_w3c_date,
    }

    def __init__(self, prop: str, grammar: _DateGrammar) -> None:
        if grammar not in self._grammars:
            raise ValueError(f"unknown date grammar: {grammar!r}")
        self.prop = prop
        self.grammar = grammar

    def __repr__(self) -> str:
        return f"DateField({self.prop!r}, {self.grammar!r})"

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        text = (element.text or "").strip()
        if not text:
            return
        try:
            value = self._grammars[self.grammar](text)
        except ValueError as e:
            logger.warning("Ignoring bad %s date in <%s>: %s", self.grammar, local_name(element), e)
            return
        target.set_prop(self.prop, value)


class PersonField(ElementParser):
    """Author of a feed (``channel=True``) or item.

    Accepts both the Atom person construct (``name``/``email``/``uri``
    children) and the free-form RSS strings like ``joe@example.com (Joe)``.
    """

    def __init__(self, *, channel: bool) -> None:
        self.channel = channel

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        has_children = any(isinstance(child.tag, str) for child in element)
        if has_children:
            context.authors.attribute_person(
                target,
                _child_text(element, "name"),
                _child_text(element, "email"),
                _child_text(element, "uri", "url"),
                channel=self.channel,
            )
            return
        creator = (element.text or "").strip()
        if not creator:
            return
        if self.channel:
            context.authors.attribute_feed(target, creator)
        else:
            context.authors.attribute_item(target, creator)


class LinkOrEnclosure(ElementParser):
    """Atom entry ``<link>``: alternate link, enclosure, or related post."""

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        href = (element.get("href") or "").strip()
        if not href:
            return
        href = _resolve(href, target, context)
        rel = (element.get("rel") or "alternate").strip().lower()
        if rel == "alternate":
            if not target.has_prop(props.LINK):
                target.set_prop(props.LINK, href)
        elif rel == "enclosure":
            _set_enclosure(target, href, element.get("length"), element.get("type"), element)
        elif rel == "related":
            store = context.store
            existing = store.find(props.LINKED_POST_STUB, props.URL, href)
            stub = existing[0] if existing else store.new_resource(props.LINKED_POST_STUB, url=href)
            target.add_link(props.LINK_LINKED_POST, stub)
        else:
            logger.debug("Ignoring <link rel=%r>", rel)


class ChannelLink(ElementParser):
    """Atom feed ``<link>``; only the alternate link becomes the home page."""

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        rel = (element.get("rel") or "alternate").strip().lower()
        href = (element.get("href") or "").strip()
        if rel == "alternate" and href:
            target.set_prop(props.HOME_PAGE, _resolve(href, target, context))


class RawXhtmlBody(ElementParser):
    """``<xhtml:body>``: the inner markup becomes the long body."""

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        body = inner_xml(element).strip()
        if body:
            target.set_prop(props.LONG_BODY, body)


def _convert(value: str, source_is_html: bool, expected: _TextFormat) -> str:
    if expected == "html":
        return value if source_is_html else html_encode(value)
    if source_is_html:
        return normalize_whitespace(html_decode(strip_html(value))).strip()
    return value


class TextConstruct(ElementParser):
    """Atom 1.0 text construct (``type`` of text, html or xhtml).

    The value is converted to ``expected_format`` before it is stored.
    """

    def __init__(self, prop: str, expected_format: _TextFormat) -> None:
        self.prop = prop
        self.expected_format = expected_format

    def __repr__(self) -> str:
        return f"TextConstruct({self.prop!r}, {self.expected_format!r})"

    def store_value(self, target: Resource, value: str) -> None:
        target.set_prop(self.prop, value)

    def read(self, element: _Element) -> Optional[str]:
        if element.get("src"):
            logger.debug("Skipping out-of-line <%s src=...>", local_name(element))
            return None
        content_type = (element.get("type") or "text").strip().lower()
        if content_type in _XHTML_TYPES:
            div = element.find(f"{_XHTML_PREFIX}div")
            value = inner_xml(div if div is not None else element)
            return _convert(value, True, self.expected_format)
        if content_type in _HTML_TYPES:
            return _convert(element_text(element), True, self.expected_format)
        return _convert(element_text(element), len(element) > 0, self.expected_format)

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        value = self.read(element)
        if value is not None and value.strip():
            self.store_value(target, value.strip())


class AtomContent(TextConstruct):
    """Atom 0.3 content: ``mode`` of xml, escaped or base64 plus a MIME ``type``."""

    def read(self, element: _Element) -> Optional[str]:
        mode = (element.get("mode") or "xml").strip().lower()
        content_type = (element.get("type") or "text/plain").strip().lower()
        if mode == "base64":
            logger.warning("Skipping base64 <%s> content", local_name(element))
            return None
        if mode == "escaped":
            source_is_html = content_type in _HTML_TYPES or content_type in _XHTML_TYPES
            return _convert(element.text or "", source_is_html, self.expected_format)
        if len(element) > 0:
            return _convert(inner_xml(element), True, self.expected_format)
        source_is_html = content_type in _HTML_TYPES or content_type in _XHTML_TYPES
        return _convert(element.text or "", source_is_html, self.expected_format)


class FeedNameConstruct(TextConstruct):
    """Atom 1.0 feed ``<title>``."""

    def __init__(self) -> None:
        super().__init__(props.NAME, "text")

    def store_value(self, target: Resource, value: str) -> None:
        _set_feed_name(target, value)


class CategoryField(ElementParser):
    """Atom ``<category>``: the label, else the term; first category wins."""

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        if target.has_prop(props.RSS_CATEGORY):
            return
        value = (element.get("label") or element.get("term") or element.text or "").strip()
        if value:
            target.set_prop(props.RSS_CATEGORY, value)


class Ignore(ElementParser):
    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        return None


ExtensionCallback = Callable[[Resource, "_Element", ParseContext], None]


class Extension(ElementParser):
    """Adapter for element handlers supplied by embedders."""

    def __init__(self, callback: ExtensionCallback) -> None:
        self.callback = callback

    def __repr__(self) -> str:
        return f"Extension({self.callback!r})"

    def parse(self, target: Resource, element: _Element, context: ParseContext) -> None:
        self.callback(target, element, context)
