"""Turn free-form author strings and Atom person constructs into contacts."""

from __future__ import annotations

import logging
import re
from typing import Optional

from . import props
from .htmltools import html_decode, normalize_whitespace
from .store import Resource, ResourceStore

logger = logging.getLogger(__name__)

# Tried in order; each yields (email, name) groups in the stated order.
_CREATOR_PATTERNS: tuple[tuple[re.Pattern[str], int, int], ...] = (
    # "joe@example.com (Joe Bloggs)"
    (re.compile(r"^\s*([^@\s()]+@[^@\s()]+)\s+\(([^()]+)\)\s*$"), 1, 2),
    # "Joe Bloggs (joe@example.com)"
    (re.compile(r"^\s*([^@()]+?)\s+\(([^@\s()]+@[^@\s()]+)\)\s*$"), 2, 1),
    # "Joe Bloggs <joe@example.com>"
    (re.compile(r"^\s*([^<]+?)\s*<([^@<>\s]+@[^@<>\s]+)>\s*$"), 2, 1),
)


def split_creator(text: str) -> tuple[Optional[str], Optional[str]]:
    """Split an author string into ``(email, name)``.

    >>> split_creator("joe@example.com (Joe Bloggs)")
    ('joe@example.com', 'Joe Bloggs')
    >>> split_creator("Joe Bloggs")
    (None, 'Joe Bloggs')
    """
    text = normalize_whitespace(html_decode(text or "")).strip()
    if not text:
        return None, None
    for pattern, email_group, name_group in _CREATOR_PATTERNS:
        match = pattern.match(text)
        if match:
            return match.group(email_group).strip(), match.group(name_group).strip()
    if text.count("@") == 1 and " " not in text:
        return text, None
    return None, text


class AuthorResolver:
    """Attribute feeds and items to contacts found or created in the store."""

    def __init__(self, store: ResourceStore) -> None:
        self.store = store

    split_creator = staticmethod(split_creator)

    def _contact(self, email: Optional[str], name: Optional[str]) -> Optional[Resource]:
        if not email and not name:
            return None
        return self.store.find_or_create_contact(email, name)

    def _link_feed_author(self, feed: Resource, contact: Resource, email: Optional[str]) -> None:
        if feed.get_link(props.LINK_WEBLOG, props.CONTACT) is None:
            feed.add_link(props.LINK_WEBLOG, contact)
            logger.debug("Feed %r attributed to %r", feed, contact)
        if email and feed.get_link(props.LINK_AUTHOR_EMAIL) is None:
            feed.add_link(props.LINK_AUTHOR_EMAIL, contact)

    def attribute_feed(self, feed: Resource, creator: str) -> Optional[Resource]:
        """Attribute ``feed`` to the author named by ``creator``.

        The first attribution wins: a feed that already links an author keeps it.
        """
        email, name = split_creator(creator)
        contact = self._contact(email, name)
        if contact is None:
            return None
        with self.store.batch(feed):
            feed.set_prop(props.AUTHOR, name or email)
            self._link_feed_author(feed, contact, email)
        return contact

    def attribute_item(self, item: Resource, creator: str) -> Optional[Resource]:
        email, name = split_creator(creator)
        contact = self._contact(email, name)
        if contact is not None:
            item.add_link(props.LINK_FROM, contact)
        return contact

    def attribute_person(
        self,
        target: Resource,
        name: Optional[str],
        email: Optional[str],
        url: Optional[str],
        *,
        channel: bool,
    ) -> Optional[Resource]:
        """Attribute ``target`` to an Atom person construct."""
        name = normalize_whitespace(html_decode(name)).strip() if name else None
        email = email.strip() if email else None
        contact = self._contact(email, name)
        if contact is None:
            return None
        if url and not contact.has_prop(props.HOME_PAGE):
            contact.set_prop(props.HOME_PAGE, url.strip())
        if channel:
            with self.store.batch(target):
                target.set_prop(props.AUTHOR, name or email)
                self._link_feed_author(target, contact, email)
        else:
            target.add_link(props.LINK_FROM, contact)
        return contact
