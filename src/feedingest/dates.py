"""Date grammars used by feeds: RFC-822 (RSS) and W3C-DTF (Atom, Dublin Core).

Both parsers return timezone-aware datetimes in the local zone and raise
``ValueError`` for text they cannot understand.
"""

from __future__ import annotations

import datetime
import re
from email.utils import parsedate_to_datetime
from functools import lru_cache
from typing import NamedTuple, Optional

from dateutil import parser as dateutil_parser

_UTC = datetime.timezone.utc

_RE_WHITESPACE = re.compile(r"\s+")
_RE_RFC822 = re.compile(
    r"(?:\w{3},\s+)?(\d{1,2})\s+(\w{3})\s+(\d{4})\s+(\d{2}):(\d{2}):(\d{2})\s+([+-]\d{4}|[A-Z]{2,5})"
)
_MONTHS_RFC822: dict[str, int] = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

_ZONE_OFFSETS: dict[str, int] = {
    "UTC": 0,
    "UT": 0,
    "GMT": 0,
    "Z": 0,
    "WET": 0,
    "WEST": 3600,
    "BST": 3600,
    "CET": 3600,
    "CEST": 7200,
    "EET": 7200,
    "EEST": 10800,
    "MSK": 10800,
    "IST": 19800,
    "PST": -28800,
    "PDT": -25200,
    "MST": -25200,
    "MDT": -21600,
    "CST": -21600,
    "CDT": -18000,
    "EST": -18000,
    "EDT": -14400,
    "AKST": -32400,
    "AKDT": -28800,
    "HST": -36000,
    "AEST": 36000,
    "AEDT": 39600,
    "ACST": 34200,
    "ACDT": 37800,
    "AWST": 28800,
    "NZST": 43200,
    "NZDT": 46800,
    "JST": 32400,
    "KST": 32400,
    "SGT": 28800,
}


def _ensure_utc(dt: datetime.datetime) -> Optional[datetime.datetime]:
    """Return a timezone-aware datetime normalized to UTC; naive input is taken as UTC."""
    try:
        return dt.replace(tzinfo=_UTC) if dt.tzinfo is None else dt.astimezone(_UTC)
    except (ValueError, OverflowError):
        return None


def _zone_offset(zone: str) -> Optional[int]:
    """Seconds east of UTC for ``+hhmm``/``-hhmm`` or a zone abbreviation."""
    if zone[0] in "+-":
        seconds = int(zone[1:3]) * 3600 + int(zone[3:5]) * 60
        return -seconds if zone[0] == "-" else seconds
    return _ZONE_OFFSETS.get(zone)


def _fast_rfc822_to_utc(value: str) -> Optional[datetime.datetime]:
    match = _RE_RFC822.match(value)
    if match is None:
        return None
    day, month_name, year, hour, minute, second, zone = match.groups()
    month = _MONTHS_RFC822.get(month_name.lower())
    offset = _zone_offset(zone)
    if month is None or offset is None or abs(offset) >= 86400:
        return None

    # "24:00:00" is midnight of the following day
    rollover = hour == "24"
    try:
        parsed = datetime.datetime(
            int(year),
            month,
            int(day),
            0 if rollover else int(hour),
            int(minute),
            int(second),
            tzinfo=datetime.timezone(datetime.timedelta(seconds=offset)),
        )
    except ValueError:
        return None
    if rollover:
        parsed += datetime.timedelta(days=1)
    return parsed.astimezone(_UTC)


def _parsedate_to_utc(value: str) -> Optional[datetime.datetime]:
    """RFC-822 / RFC-2822 parsing via email.utils (fallback)."""
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    return _ensure_utc(parsed)


def _slow_dateutil_parse(value: str) -> Optional[datetime.datetime]:
    try:
        parsed = dateutil_parser.parse(value, tzinfos=_ZONE_OFFSETS, ignoretz=False)
    except (ValueError, TypeError, OverflowError):
        return None
    return _ensure_utc(parsed)


@lru_cache(maxsize=4096)
def _rfc822_to_utc(candidate: str) -> Optional[datetime.datetime]:
    return (
        _fast_rfc822_to_utc(candidate)
        or _parsedate_to_utc(candidate)
        or _slow_dateutil_parse(candidate)
    )


def parse_rfc822_date(text: str) -> datetime.datetime:
    """Parse an RFC-822 date as found in RSS ``pubDate`` elements.

    Tries a fast regex path first, then :mod:`email.utils`, then
    :mod:`dateutil` for the long tail of creative formats.

    Raises:
        ValueError: when none of the parsers accepts ``text``.
    """
    candidate = _RE_WHITESPACE.sub(" ", text or "").strip()
    if not candidate:
        raise ValueError("empty date")
    parsed = _rfc822_to_utc(candidate)
    if parsed is None:
        raise ValueError(f"unparseable RFC-822 date: {text!r}")
    return parsed.astimezone()


class _Fragment(NamedTuple):
    lead: str
    digits: int
    optional: bool
    default: int


# Positional W3C-DTF grammar: YYYY-MM-DDThh:mm[:ss]
_W3C_FRAGMENTS: tuple[_Fragment, ...] = (
    _Fragment("", 4, False, 0),
    _Fragment("-", 2, False, 1),
    _Fragment("-", 2, False, 1),
    _Fragment("T", 2, False, 0),
    _Fragment(":", 2, False, 0),
    _Fragment(":", 2, True, 0),
)


def _read_fragment(text: str, pos: int, fragment: _Fragment) -> tuple[Optional[int], int]:
    """Read one fragment at ``pos``; returns ``(value, new_pos)``.

    ``value`` is None when the fragment is absent and may take its default.
    """
    if pos >= len(text):
        return None, pos
    if fragment.lead:
        if not text.startswith(fragment.lead, pos):
            if fragment.optional:
                return None, pos
            raise ValueError(f"expected {fragment.lead!r} at offset {pos} in {text!r}")
        pos += len(fragment.lead)
    digits = text[pos : pos + fragment.digits]
    if len(digits) != fragment.digits or not digits.isdigit():
        raise ValueError(f"expected {fragment.digits} digits at offset {pos} in {text!r}")
    return int(digits), pos + fragment.digits


def parse_w3c_date(text: str) -> datetime.datetime:
    """Parse a W3C-DTF date (``2003-12-13T18:30:02.25+01:00``).

    Missing trailing fragments default to the start of the period, fractions
    are truncated to milliseconds, and the result is converted from the
    stated offset (UTC when none) to the local zone. Text after the last
    fragment that is not a zone designator is ignored.

    Raises:
        ValueError: on any malformed fragment or out-of-range component.
    """
    text = (text or "").strip()
    if not text:
        raise ValueError("empty date")

    pos = 0
    values: list[int] = []
    for fragment in _W3C_FRAGMENTS:
        value, pos = _read_fragment(text, pos, fragment)
        values.append(fragment.default if value is None else value)

    millis = 0
    if text.startswith(".", pos):
        end = pos + 1
        while end < len(text) and text[end].isdigit():
            end += 1
        fraction = text[pos + 1 : end]
        if not fraction:
            raise ValueError(f"empty fraction in {text!r}")
        millis = int(fraction[:3].ljust(3, "0"))
        pos = end

    offset = datetime.timedelta()
    rest = text[pos:]
    if rest in ("Z", "z"):
        pass
    elif rest[:1] in ("+", "-"):
        hours, minutes = rest[1:3], rest[4:6]
        if not (
            len(rest) == 6 and rest[3] == ":" and hours.isdigit() and minutes.isdigit()
        ):
            raise ValueError(f"bad zone offset in {text!r}")
        offset = datetime.timedelta(hours=int(hours), minutes=int(minutes))
        if rest[0] == "-":
            offset = -offset
    # Anything else after the last fragment ("... GMT") is ignored

    year, month, day, hour, minute, second = values
    try:
        local = datetime.datetime(year, month, day, hour, minute, second, millis * 1000)
        utc = (local - offset).replace(tzinfo=_UTC)
        return utc.astimezone()
    except OverflowError as e:
        raise ValueError(f"date out of range: {text!r}") from e
