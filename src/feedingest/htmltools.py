from __future__ import annotations

import html as _html_mod
import re
from urllib.parse import urljoin, urlsplit

_RE_HTML_TAGS = re.compile(r"<[^>]+>")
_RE_LINE_BREAK = re.compile(r"<\s*(?:br|/?p|/div|/li|/h[1-6])(?:\s[^>]*)?/?\s*>", re.IGNORECASE)
_RE_WHITESPACE = re.compile(r"\s+")
_RE_LINK_ATTR = re.compile(
    r"(?P<lead>\b(?:src|href|background)\s*=\s*)"
    r"(?:\"(?P<dq>[^\"]*)\"|'(?P<sq>[^']*)'|(?P<bare>[^\s>\"']+))",
    re.IGNORECASE,
)
_RE_CSS_URL = re.compile(
    r"(?P<lead>url\(\s*)(?P<quote>[\"']?)(?P<url>[^\"')]+)(?P=quote)(?P<tail>\s*\))",
    re.IGNORECASE,
)
_RE_CSS_IMPORT = re.compile(
    r"(?P<lead>@import\s+)(?P<quote>[\"'])(?P<url>[^\"']+)(?P=quote)", re.IGNORECASE
)
_RE_HREF_DQ = re.compile(r'href="([^"]+)"')
_RE_HREF_SQ = re.compile(r"href='([^']+)'")
_UNRESOLVED_PREFIXES = ("#", "mailto:", "javascript:", "data:", "news:", "tel:")

MAX_SUBJECT_LENGTH = 100


def strip_html(text: str) -> str:
    return _RE_HTML_TAGS.sub("", text)


def html_decode(text: str) -> str:
    if "&" not in text:
        return text
    return _html_mod.unescape(text)


def html_encode(text: str) -> str:
    return _html_mod.escape(text, quote=False)


def is_html(text: str) -> bool:
    """Return True when ``text`` contains an ``<html ...>`` start tag."""
    lowered = text.lower()
    pos = lowered.find("<html")
    return pos >= 0 and lowered.find(">", pos) >= 0


def normalize_whitespace(text: str) -> str:
    return _RE_WHITESPACE.sub(" ", text)


def _resolve(url: str, base_url: str) -> str:
    stripped = url.strip()
    if not stripped or stripped.lower().startswith(_UNRESOLVED_PREFIXES):
        return url
    if urlsplit(stripped).scheme:
        return url
    return urljoin(base_url, stripped)


def fix_relative_links(text: str, base_url: str) -> str:
    """Resolve relative ``src``/``href``/``background``/CSS URLs against ``base_url``.

    Absolute URLs are left untouched, so applying this twice gives the same
    result as applying it once.
    """
    if not text or not base_url:
        return text
    parts = urlsplit(base_url)
    if not parts.scheme or not parts.netloc:
        return text

    def attr_sub(match: re.Match[str]) -> str:
        lead = match.group("lead")
        if match.group("dq") is not None:
            return f'{lead}"{_resolve(match.group("dq"), base_url)}"'
        if match.group("sq") is not None:
            return f"{lead}'{_resolve(match.group('sq'), base_url)}'"
        return f"{lead}{_resolve(match.group('bare'), base_url)}"

    def url_sub(match: re.Match[str]) -> str:
        quote = match.group("quote")
        resolved = _resolve(match.group("url"), base_url)
        return f"{match.group('lead')}{quote}{resolved}{quote}{match.group('tail')}"

    def import_sub(match: re.Match[str]) -> str:
        quote = match.group("quote")
        resolved = _resolve(match.group("url"), base_url)
        return f"{match.group('lead')}{quote}{resolved}{quote}"

    text = _RE_LINK_ATTR.sub(attr_sub, text)
    text = _RE_CSS_URL.sub(url_sub, text)
    return _RE_CSS_IMPORT.sub(import_sub, text)


def extract_hrefs(text: str) -> list[str]:
    """Return every quoted ``href`` value in ``text``, in order of appearance."""
    if not text:
        return []
    found = [m.group(1).strip() for m in _RE_HREF_DQ.finditer(text)]
    found.extend(m.group(1).strip() for m in _RE_HREF_SQ.finditer(text))
    return [href for href in found if href]


def default_subject(body: str) -> str:
    """Build a subject line from the first line of an HTML body."""
    subject = strip_html(_RE_LINE_BREAK.sub("\n", body)).strip()
    line_break = subject.find("\n")
    if line_break != -1:
        subject = subject[:line_break]
    subject = normalize_whitespace(html_decode(subject)).strip()

    if len(subject) > MAX_SUBJECT_LENGTH:
        pos = MAX_SUBJECT_LENGTH
        while pos >= 0 and subject[pos] != " ":
            pos -= 1
        while pos >= 0 and subject[pos] == " ":
            pos -= 1
        if pos > 0:
            subject = subject[: pos + 1] + "..."
        else:
            subject = subject[:MAX_SUBJECT_LENGTH]
    return subject
