from __future__ import annotations


class FeedError(Exception):
    """Base class for feed ingestion errors."""


class FeedXMLError(FeedError, ValueError):
    """The fetched document is not well-formed XML."""


class FeedIntegrityError(FeedError, RuntimeError):
    """A feed/item linkage invariant was broken.

    Raised when an item ends up linked to more than one feed (or to the wrong
    one) or when a transient item is reused while still live. These indicate a
    programming error in the merge path and are never caught by the parser or
    the update job.
    """


class FeedTimeoutError(FeedError, TimeoutError):
    """The feed download did not complete in time."""
