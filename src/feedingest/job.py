"""Download a feed over HTTP and run it through the parser.

A :class:`FeedUpdateJob` runs once: it performs a conditional GET, streams
the body while reporting progress, parses it, and ends in exactly one
terminal :class:`JobStatus`.
"""

from __future__ import annotations

import asyncio
import datetime
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

import httpx

from . import props
from .exceptions import FeedIntegrityError, FeedTimeoutError, FeedXMLError
from .htmltools import is_html
from .parser import FeedParser, ShutdownSignal
from .registry import ElementParserRegistry
from .settings import DEFAULT_ACCEPT, FetchSettings
from .store import Resource, ResourceStore

logger = logging.getLogger(__name__)

UPDATING_STATUS = "(updating)"

_NOT_MODIFIED_CODES = (304, 412)
_PERMANENT_REDIRECT_CODES = (301, 308)
_HTML_SNIFF_BYTES = 256


class JobStatus(enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    NOT_MODIFIED = "not_modified"
    HTTP_ERROR = "http_error"
    XML_ERROR = "xml_error"
    FOUND_HTML = "found_html"
    FOUND_XML = "found_xml"
    FEED_DELETED = "feed_deleted"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobStatus.NOT_STARTED, JobStatus.IN_PROGRESS)


_STATUS_MESSAGES: dict[JobStatus, str] = {
    JobStatus.HTTP_ERROR: "HTTP error",
    JobStatus.XML_ERROR: "XML error",
    JobStatus.FOUND_HTML: "Found HTML page instead of a feed",
    JobStatus.FOUND_XML: "Not an RSS or Atom feed",
}


@dataclass(frozen=True)
class DownloadProgress:
    current: int
    total: Optional[int] = None

    def __str__(self) -> str:
        if self.total:
            return f"Downloading ({self.current // 1024}K/{self.total // 1024}K)..."
        return f"Downloading ({self.current // 1024}K)..."


def looks_like_html(body: bytes) -> bool:
    return is_html(body[:_HTML_SNIFF_BYTES].decode("latin-1"))


@dataclass
class _Download:
    status_code: int
    body: bytes = b""
    content_type: str = ""
    encoding: Optional[str] = None
    etag: Optional[str] = None


JobCallback = Callable[["FeedUpdateJob"], Any]
ProgressCallback = Callable[["FeedUpdateJob", DownloadProgress], Any]
ItemCallback = Callable[[Resource], Any]


def _notify(callbacks: Iterable[Callable[..., Any]], *args: Any) -> None:
    for callback in callbacks:
        try:
            callback(*args)
        except FeedIntegrityError:
            raise
        except Exception:
            logger.exception("Callback %r failed", callback)


class FeedUpdateJob:
    """Fetch and parse one feed. Not reusable."""

    def __init__(
        self,
        feed: Resource,
        store: ResourceStore,
        *,
        parse_items: bool = True,
        settings: Optional[FetchSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        registry: Optional[ElementParserRegistry] = None,
        shutdown: Optional[ShutdownSignal] = None,
    ) -> None:
        self.feed = feed
        self.store = store
        self.parse_items = parse_items
        self.settings = settings or FetchSettings()
        self.registry = registry
        self.shutdown = shutdown
        self.status = JobStatus.NOT_STARTED
        self.last_exception: Optional[BaseException] = None
        self.content_type: Optional[str] = None
        self.download_progress: list[ProgressCallback] = []
        self.parse_done: list[JobCallback] = []
        self.item_parsed: list[ItemCallback] = []
        self.item_added: list[ItemCallback] = []
        self._client = client

    def __repr__(self) -> str:
        return f"<FeedUpdateJob {self.feed.get_text(props.URL)!r} {self.status.name}>"

    def _request_headers(self) -> dict[str, str]:
        headers = {"User-Agent": self.settings.user_agent, "Accept": DEFAULT_ACCEPT}
        if self.settings.disable_compression or self.feed.get_prop(props.DISABLE_COMPRESSION):
            headers["Accept-Encoding"] = "identity"
        else:
            headers["Accept-Encoding"] = "gzip, deflate, br"
        etag = self.feed.get_text(props.ETAG)
        if etag:
            headers["If-None-Match"] = etag
        return headers

    def _auth(self) -> Optional[httpx.BasicAuth]:
        user = self.feed.get_text(props.HTTP_USER_NAME)
        password = self.feed.get_text(props.HTTP_PASSWORD)
        if user and password:
            return httpx.BasicAuth(user, password)
        return None

    def _follow_permanent_redirect(self, response: httpx.Response) -> None:
        if not response.history:
            return
        if all(r.status_code in _PERMANENT_REDIRECT_CODES for r in response.history):
            new_url = str(response.url)
            if new_url != self.feed.get_text(props.URL):
                logger.info("Feed moved permanently: %s -> %s", self.feed.get_text(props.URL), new_url)
                self.feed.set_prop(props.URL, new_url)

    async def _download(self, client: httpx.AsyncClient) -> _Download:
        url = self.feed.get_text(props.URL)
        async with client.stream(
            "GET", url, headers=self._request_headers(), auth=self._auth()
        ) as response:
            if response.status_code in _NOT_MODIFIED_CODES:
                return _Download(response.status_code)
            response.raise_for_status()
            self._follow_permanent_redirect(response)

            length = response.headers.get("Content-Length")
            total = int(length) if length and length.isdigit() else None
            chunks: list[bytes] = []
            received = 0
            async for chunk in response.aiter_bytes():
                chunks.append(chunk)
                received += len(chunk)
                # num_bytes_downloaded stays 0 when the body was not streamed
                current = response.num_bytes_downloaded or received
                _notify(self.download_progress, self, DownloadProgress(current, total))
            return _Download(
                response.status_code,
                b"".join(chunks),
                response.headers.get("Content-Type", ""),
                response.charset_encoding,
                response.headers.get("ETag"),
            )

    async def _fetch(self) -> Optional[_Download]:
        client = self._client
        close_client = False
        if client is None:
            client = httpx.AsyncClient(follow_redirects=True, timeout=self.settings.timeout)
            close_client = True
        try:
            return await asyncio.wait_for(self._download(client), timeout=self.settings.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            url = self.feed.get_text(props.URL)
            timeout = FeedTimeoutError(f"Timed out after {self.settings.timeout}s fetching {url}")
            timeout.__cause__ = e
            self._finish(JobStatus.HTTP_ERROR, timeout)
        except httpx.HTTPError as e:
            self._finish(JobStatus.HTTP_ERROR, e)
        finally:
            if close_client:
                await client.aclose()
        return None

    async def run(self) -> JobStatus:
        if self.status is not JobStatus.NOT_STARTED:
            raise RuntimeError(f"{self!r} has already run")
        if self.feed.deleted:
            self._finish(JobStatus.FEED_DELETED)
            return self.status

        self.status = JobStatus.IN_PROGRESS
        self.feed.set_prop(props.UPDATE_STATUS, UPDATING_STATUS)
        logger.info("Updating feed %s", self.feed.get_text(props.URL))

        download = await self._fetch()
        if download is None:
            return self.status
        if download.status_code in _NOT_MODIFIED_CODES:
            self._finish(JobStatus.NOT_MODIFIED)
            return self.status
        if self.feed.deleted:
            self._finish(JobStatus.FEED_DELETED)
            return self.status

        self.content_type = download.content_type
        self._parse(download)
        return self.status

    def _parse(self, download: _Download) -> None:
        parser = FeedParser(self.feed, self.store, self.registry, shutdown=self.shutdown)
        parser.item_parsed.extend(self.item_parsed)
        parser.item_added.extend(self.item_added)
        try:
            found_channel = parser.parse(download.body, download.encoding, self.parse_items)
        except FeedXMLError as e:
            html_type = download.content_type.split(";")[0].strip().lower() == "text/html"
            if self.settings.accept_html_if_xml_error and (
                html_type or looks_like_html(download.body)
            ):
                self._finish(JobStatus.FOUND_HTML, e)
            else:
                self._finish(JobStatus.XML_ERROR, e)
            return

        if found_channel:
            # ETag is kept only once the items were parsed
            self.feed.set_prop(props.ETAG, download.etag if self.parse_items else None)
            self._finish(JobStatus.SUCCESS)
        elif looks_like_html(download.body):
            self._finish(JobStatus.FOUND_HTML)
        else:
            self._finish(JobStatus.FOUND_XML)

    def _finish(self, status: JobStatus, exc: Optional[BaseException] = None) -> None:
        if self.status.is_terminal:
            logger.debug("%r already finished, ignoring %s", self, status.name)
            return
        self.status = status
        self.last_exception = exc

        message = _STATUS_MESSAGES.get(status)
        if message and exc is not None:
            message = f"{message}: {exc}"
        self.feed.set_prop(props.UPDATE_STATUS, message)
        self.feed.set_prop(props.LAST_UPDATE_TIME, datetime.datetime.now().astimezone())

        if exc is not None:
            logger.warning("Feed %s finished with %s: %s", self.feed.get_text(props.URL), status.name, exc)
        else:
            logger.info("Feed %s finished with %s", self.feed.get_text(props.URL), status.name)
        _notify(self.parse_done, self)


async def update_feeds(
    feeds: Iterable[Resource],
    store: ResourceStore,
    *,
    parse_items: bool = True,
    settings: Optional[FetchSettings] = None,
    client: Optional[httpx.AsyncClient] = None,
    registry: Optional[ElementParserRegistry] = None,
    shutdown: Optional[ShutdownSignal] = None,
) -> list[FeedUpdateJob]:
    """Update every feed concurrently, at most ``settings.max_concurrent_jobs`` at once.

    A job that fails does not affect the others; inspect each returned job's
    ``status`` and ``last_exception``.
    """
    settings = settings or FetchSettings()
    registry = registry if registry is not None else ElementParserRegistry.with_defaults()
    semaphore = asyncio.Semaphore(max(1, settings.max_concurrent_jobs))

    close_client = False
    if client is None:
        client = httpx.AsyncClient(follow_redirects=True, timeout=settings.timeout)
        close_client = True

    jobs = [
        FeedUpdateJob(
            feed,
            store,
            parse_items=parse_items,
            settings=settings,
            client=client,
            registry=registry,
            shutdown=shutdown,
        )
        for feed in feeds
    ]

    async def run_one(job: FeedUpdateJob) -> JobStatus:
        async with semaphore:
            return await job.run()

    try:
        results = await asyncio.gather(*(run_one(job) for job in jobs), return_exceptions=True)
    finally:
        if close_client:
            await client.aclose()

    for job, result in zip(jobs, results):
        if isinstance(result, FeedIntegrityError):
            raise result
        if isinstance(result, BaseException):
            logger.error("Updating %r failed: %s", job.feed, result, exc_info=result)
    return jobs
