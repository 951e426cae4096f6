"""Resource model and the store the ingestion core writes into.

The core talks to persistence only through :class:`ResourceStore`: create,
read and update properties and links, group property writes in a batch, and
find resources by an exact property value. :class:`MemoryStore` is a complete
in-process implementation used by the tests and by embedders that keep their
own persistence elsewhere.
"""

from __future__ import annotations

import itertools
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Protocol

from . import props

logger = logging.getLogger(__name__)


class Resource:
    """A typed property bag with bidirectional typed links."""

    __slots__ = ("type", "id", "deleted", "_props", "_links")

    def __init__(self, resource_type: str, resource_id: Optional[int] = None) -> None:
        self.type = resource_type
        self.id = resource_id
        self.deleted = False
        self._props: dict[str, Any] = {}
        # link type -> [(other, outgoing)]
        self._links: dict[str, list[tuple[Resource, bool]]] = {}

    def __repr__(self) -> str:
        return f"<Resource {self.type}#{self.id} {self.display_name!r}>"

    @property
    def is_transient(self) -> bool:
        return self.id is None

    @property
    def display_name(self) -> str:
        for name in (props.NAME, props.SUBJECT, props.EMAIL, props.URL):
            value = self._props.get(name)
            if value:
                return str(value)
        return ""

    @property
    def properties(self) -> dict[str, Any]:
        return dict(self._props)

    def has_prop(self, name: str) -> bool:
        return name in self._props

    def get_prop(self, name: str, default: Any = None) -> Any:
        return self._props.get(name, default)

    def get_text(self, name: str) -> str:
        value = self._props.get(name)
        return "" if value is None else str(value)

    def set_prop(self, name: str, value: Any) -> None:
        if value is None:
            self._props.pop(name, None)
        else:
            self._props[name] = value

    def delete_prop(self, name: str) -> None:
        self._props.pop(name, None)

    def add_link(self, link_type: str, other: Resource) -> None:
        """Link ``self`` -> ``other``; the link is visible from both ends."""
        if other is self or self.has_link(link_type, other):
            return
        self._links.setdefault(link_type, []).append((other, True))
        other._links.setdefault(link_type, []).append((self, False))

    def remove_link(self, link_type: str, other: Resource) -> None:
        for res, back in ((self, other), (other, self)):
            linked = res._links.get(link_type)
            if linked:
                linked[:] = [entry for entry in linked if entry[0] is not back]

    def _linked(
        self, link_type: str, resource_type: Optional[str], outgoing: Optional[bool]
    ) -> list[Resource]:
        return [
            res
            for res, is_out in self._links.get(link_type, [])
            if not res.deleted
            and (outgoing is None or is_out == outgoing)
            and (resource_type is None or res.type == resource_type)
        ]

    def get_links(
        self, link_type: str, resource_type: Optional[str] = None
    ) -> list[Resource]:
        return self._linked(link_type, resource_type, None)

    def get_links_from(
        self, link_type: str, resource_type: Optional[str] = None
    ) -> list[Resource]:
        """Resources this one links to."""
        return self._linked(link_type, resource_type, True)

    def get_links_to(
        self, link_type: str, resource_type: Optional[str] = None
    ) -> list[Resource]:
        """Resources linking to this one."""
        return self._linked(link_type, resource_type, False)

    def get_link(
        self, link_type: str, resource_type: Optional[str] = None
    ) -> Optional[Resource]:
        linked = self.get_links(link_type, resource_type)
        return linked[0] if linked else None

    def has_link(self, link_type: str, other: Resource) -> bool:
        return any(res is other for res, _ in self._links.get(link_type, []))

    def clear_properties(self) -> None:
        """Drop every property and link, detaching this resource completely."""
        self._props.clear()
        for link_type, linked in list(self._links.items()):
            for other, _ in list(linked):
                self.remove_link(link_type, other)
        self._links.clear()


class ResourceStore(Protocol):
    """What the ingestion core needs from the persistent store."""

    def new_resource(self, resource_type: str, **values: Any) -> Resource: ...

    def new_transient(self, resource_type: str) -> Resource: ...

    def commit(self, resource: Resource) -> Resource: ...

    def delete(self, resource: Resource) -> None: ...

    def find(self, resource_type: Optional[str], name: str, value: Any) -> list[Resource]: ...

    def batch(self, resource: Resource) -> Any: ...

    def find_or_create_contact(
        self, email: Optional[str], name: Optional[str]
    ) -> Resource: ...


class MemoryStore:
    """In-memory :class:`ResourceStore`."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._resources: dict[int, Resource] = {}
        self._contacts_by_email: dict[str, Resource] = {}
        self._contacts_by_name: dict[str, Resource] = {}

    def __len__(self) -> int:
        return sum(1 for res in self._resources.values() if not res.deleted)

    def new_resource(self, resource_type: str, **values: Any) -> Resource:
        resource = Resource(resource_type)
        for name, value in values.items():
            resource.set_prop(name, value)
        return self.commit(resource)

    def new_feed(self, url: str, **values: Any) -> Resource:
        return self.new_resource(props.FEED, url=url, **values)

    def new_transient(self, resource_type: str) -> Resource:
        return Resource(resource_type)

    def commit(self, resource: Resource) -> Resource:
        if resource.id is None:
            resource.id = next(self._ids)
            self._resources[resource.id] = resource
        return resource

    def delete(self, resource: Resource) -> None:
        resource.deleted = True
        if resource.id is not None:
            self._resources.pop(resource.id, None)

    def get(self, resource_id: int) -> Optional[Resource]:
        return self._resources.get(resource_id)

    def all(self, resource_type: Optional[str] = None) -> list[Resource]:
        return [
            res
            for res in self._resources.values()
            if not res.deleted and (resource_type is None or res.type == resource_type)
        ]

    def find(
        self, resource_type: Optional[str], name: str, value: Any
    ) -> list[Resource]:
        found: list[Resource] = []
        for res in self.all(resource_type):
            current = res.get_prop(name)
            if current is None:
                continue
            if isinstance(current, list):
                if value in current:
                    found.append(res)
            elif current == value:
                found.append(res)
        return found

    @contextmanager
    def batch(self, resource: Resource) -> Iterator[Resource]:
        yield resource

    def find_or_create_contact(
        self, email: Optional[str], name: Optional[str]
    ) -> Resource:
        email = email.strip() if email else None
        name = name.strip() if name else None

        contact: Optional[Resource] = None
        if email:
            contact = self._contacts_by_email.get(email.lower())
        elif name:
            contact = self._contacts_by_name.get(name)
        if contact is not None and not contact.deleted:
            if name and not contact.has_prop(props.NAME):
                contact.set_prop(props.NAME, name)
            return contact

        contact = self.new_resource(props.CONTACT, name=name, email=email)
        if email:
            self._contacts_by_email[email.lower()] = contact
        elif name:
            self._contacts_by_name[name] = contact
        logger.debug("Created contact %r", contact)
        return contact
