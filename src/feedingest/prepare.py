"""Turn fetched feed bytes into an lxml tree.

Real-world feeds are frequently not well-formed: junk before the XML
declaration, HTML named entities, bare ampersands, control characters,
prefixes used without being declared. Everything that can be repaired
textually is repaired here before the strict parser sees the document.
"""

from __future__ import annotations

import codecs
import logging
import re
from html.entities import name2codepoint
from typing import TYPE_CHECKING, Optional

from lxml import etree

from . import props
from .exceptions import FeedXMLError

if TYPE_CHECKING:
    from lxml.etree import _Element

logger = logging.getLogger(__name__)

_RE_XML_DECL_ENCODING = re.compile(
    r'(<\?xml[^>]*encoding=["\'])([^"\']+)(["\'][^>]*\?>)', re.IGNORECASE
)
_RE_XML_DECL_ENCODING_BYTES = re.compile(
    rb'(<\?xml[^>]*encoding=["\'])([^"\']+)(["\'][^>]*\?>)', re.IGNORECASE
)
_RE_DOUBLE_XML_DECL_BYTES = re.compile(rb"<\?xml\?xml\s+", re.IGNORECASE)
_RE_DOUBLE_CLOSE_BYTES = re.compile(rb"\?\?>\s*")
_RE_UNQUOTED_ATTR_BYTES = re.compile(rb'(\s+[\w:]+)=([^\s>"\']+)')
_RE_UTF16_ENCODING_BYTES = re.compile(
    rb'(<\?xml[^>]*encoding=["\'])utf-16(-le|-be)?(["\'][^>]*\?>)', re.IGNORECASE
)
_RE_UNCLOSED_LINK_BYTES = re.compile(
    rb"<link([^>]*[^/])>\s*(?=\n\s*<(?!/link\s*>))", re.MULTILINE
)
_RE_CDATA = re.compile(r"(<!\[CDATA\[.*?\]\]>)", re.DOTALL)
_RE_RESTRICTED_CHARS = re.compile("[\x01-\x08\x0b\x0c\x0e-\x1f\x7f-\x84\x86-\x9f]")
_RE_STRAY_AMP = re.compile(r"&(?!#?\w+;)")
_RE_NAMED_ENTITY = re.compile(r"&([A-Za-z][A-Za-z0-9]*);")
_RE_ROOT_START = re.compile(r"<([A-Za-z_][\w.:-]*)")
_RE_USED_PREFIX = re.compile(r"</?([A-Za-z_][\w.-]*):[A-Za-z_]")
_RE_USED_ATTR_PREFIX = re.compile(r"\s([A-Za-z_][\w.-]*):[A-Za-z_][\w.-]*\s*=")
_RE_DECLARED_PREFIX = re.compile(r"xmlns:([A-Za-z_][\w.-]*)\s*=")

_XML_ENTITIES = frozenset({"amp", "lt", "gt", "quot", "apos"})
_XML_START_PATTERNS = (
    b"<?xml",
    b"<rss",
    b"<feed",
    b"<rdf:rdf",
    b"<?xml-stylesheet",
)
_UNDECLARED_NS_TEMPLATE = "urn:feedingest:undeclared:{}"

_STRICT_XML_PARSER = etree.XMLParser(
    ns_clean=True,
    recover=False,
    collect_ids=False,
    resolve_entities=False,
    no_network=True,
)


def _known_codec(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    name = name.strip().strip("\"'").lower()
    try:
        codecs.lookup(name)
    except LookupError:
        return None
    return name


def _detect_xml_encoding(content: bytes, transport: Optional[str] = None) -> str:
    """Pick the codec for ``content``.

    A byte order mark wins, then the encoding named by the XML declaration,
    then the charset the transport announced. Names Python has no codec for
    are skipped; the last resort is UTF-8.
    """
    if content.startswith((b"\xff\xfe", b"\xfe\xff")):
        return "utf-16"
    if content.startswith(b"\xef\xbb\xbf"):
        return "utf-8-sig"

    decl = _RE_XML_DECL_ENCODING_BYTES.search(content[:2000])
    if decl:
        declared = decl.group(2).decode("ascii", errors="replace")
        codec = _known_codec(declared)
        if codec:
            return codec
        logger.warning("XML declaration names unknown encoding %r", declared)

    return _known_codec(transport) or "utf-8"


def _ensure_utf8_xml_declaration(content: str) -> str:
    """Ensure the XML declaration's encoding matches the UTF-8 bytes we emit."""
    if not content.lstrip().startswith("<?xml"):
        return content
    return _RE_XML_DECL_ENCODING.sub(r"\1utf-8\3", content, count=1)


_DOCUMENT_HEADS = (b"<?xml", b"<rss", b"<feed", b"<rdf", b"<!--")
_BOMS_UTF16 = (b"\xff\xfe", b"\xfe\xff")


def _skip_leading_junk(content: bytes) -> bytes:
    """Drop anything a server printed before the XML document starts."""
    body = content.lstrip()
    head = body[:2000].lower()
    if head.startswith(b"\xef\xbb\xbf"):
        head = head[3:]
    if head.startswith(_DOCUMENT_HEADS):
        return body
    if head.startswith(_BOMS_UTF16):
        return content

    window = content[:8192].lower()
    starts = [pos for pos in (window.find(p) for p in _XML_START_PATTERNS) if pos >= 0]
    first = min(starts, default=-1)
    if first > 0:
        logger.debug("Skipping %d bytes of leading junk", first)
        return content[first:]
    return body


def _repair_prolog(content: bytes, codec: str = "utf-8") -> bytes:
    """Fix broken XML declarations and unquoted attribute values."""
    prolog, rest = content[:2048], content[2048:]
    prolog = _RE_DOUBLE_XML_DECL_BYTES.sub(b"<?xml ", prolog)
    prolog = _RE_DOUBLE_CLOSE_BYTES.sub(b"?>", prolog)
    if codec.lower() != "utf-16":
        # A single-byte document claiming to be UTF-16
        prolog = _RE_UTF16_ENCODING_BYTES.sub(
            rb"\1" + codec.encode("ascii", errors="replace") + rb"\3", prolog
        )

    content = _RE_UNQUOTED_ATTR_BYTES.sub(rb'\1="\2"', prolog + rest)
    return _RE_UNCLOSED_LINK_BYTES.sub(rb"<link\1/>", content)


def _prolog_is_broken(content: bytes, codec: str) -> bool:
    head = content[:1000].lower()
    if b"?xml?xml" in head[:200] or b"??>" in head[:200]:
        return True
    if b"utf-16" in head[:200] and codec != "utf-16":
        return True
    # Prefixed attributes such as rss:version=2.0 with no xmlns:rss
    return b"rss:" in head[:500] and b"xmlns:rss" not in head


def _replace_entity(match: re.Match[str]) -> str:
    name = match.group(1)
    if name in _XML_ENTITIES:
        return match.group(0)
    codepoint = name2codepoint.get(name)
    if codepoint is None:
        return f"&amp;{name};"
    return f"&#{codepoint};"


def _fix_markup(segment: str) -> str:
    segment = _RE_STRAY_AMP.sub("&amp;", segment)
    return _RE_NAMED_ENTITY.sub(_replace_entity, segment)


def _declare_loose_prefixes(text: str) -> str:
    """Declare namespace prefixes that the document uses but never declares."""
    used = set(_RE_USED_PREFIX.findall(text))
    used.update(_RE_USED_ATTR_PREFIX.findall(text))
    used.discard("xml")
    used.discard("xmlns")
    if not used:
        return text
    missing = used.difference(_RE_DECLARED_PREFIX.findall(text))
    if not missing:
        return text

    root = _RE_ROOT_START.search(text)
    if root is None:
        return text
    declarations = []
    for prefix in sorted(missing):
        uri = props.LOOSE_PREFIXES.get(prefix.lower()) or _UNDECLARED_NS_TEMPLATE.format(
            prefix
        )
        declarations.append(f' xmlns:{prefix}="{uri}"')
    logger.debug("Declaring undeclared namespace prefixes: %s", ", ".join(sorted(missing)))
    return text[: root.end()] + "".join(declarations) + text[root.end() :]


def _repair_text(text: str) -> str:
    text = text.replace("\u2028", "\n").replace("\u2029", "\n")
    text = _RE_RESTRICTED_CHARS.sub("?", text)
    parts = _RE_CDATA.split(text)
    # CDATA sections sit at the odd indexes and are kept verbatim.
    for i in range(0, len(parts), 2):
        parts[i] = _fix_markup(parts[i])
    text = "".join(parts)
    text = _declare_loose_prefixes(text)
    return _ensure_utf8_xml_declaration(text)


def prepare_feed_bytes(data: str | bytes, encoding: Optional[str] = None) -> bytes:
    """Return UTF-8 bytes the strict XML parser is most likely to accept.

    ``encoding`` is the charset announced by the transport, if any. It is used
    when the document names no encoding or one Python does not know. The XML
    declaration of the result always says UTF-8.
    """
    if isinstance(data, str):
        return _repair_text(data).encode("utf-8", errors="replace")

    body = _skip_leading_junk(data)
    codec = _detect_xml_encoding(body, encoding)
    if codec.startswith("utf-16") and b"\x00" not in body[:200]:
        codec = "utf-8"
    if _prolog_is_broken(body, codec):
        body = _repair_prolog(body, codec)

    try:
        text = body.decode(codec, errors="replace")
    except LookupError:
        # Known to codecs but not a text encoding (rot13 and friends)
        logger.warning("Cannot decode feed as %r, falling back to UTF-8", codec)
        text = body.decode("utf-8", errors="replace")
    return _repair_text(text.lstrip("\ufeff")).encode("utf-8")


def parse_document(data: str | bytes, encoding: Optional[str] = None) -> _Element:
    """Parse a feed document strictly, raising :class:`FeedXMLError` on failure."""
    prepared = prepare_feed_bytes(data, encoding)
    if not prepared.strip():
        raise FeedXMLError("Failed to parse XML: received empty content")
    try:
        root = etree.fromstring(prepared, parser=_STRICT_XML_PARSER)
    except etree.XMLSyntaxError as e:
        raise FeedXMLError(f"Failed to parse XML content: {e}") from e
    if root is None:
        preview = prepared[:200].decode("utf-8", errors="replace").strip()
        raise FeedXMLError(
            "Failed to parse XML: received content that couldn't be parsed as XML "
            f"(first 200 chars: {preview})"
        )
    return root
