import asyncio

import httpx
import pytest

from feedingest import (
    DownloadProgress,
    FeedTimeoutError,
    FeedUpdateJob,
    FetchSettings,
    JobStatus,
    MemoryStore,
    props,
    update_feeds,
)

FEED_URL = "http://example.com/feed.xml"

RSS = b"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0"><channel><title>Example</title>
<item><title>Hello</title><guid>g1</guid></item>
</channel></rss>
"""


def _respond(content=RSS, status_code=200, **headers):
    headers.setdefault("Content-Type", "application/rss+xml; charset=utf-8")

    def handler(request):
        return httpx.Response(status_code, content=content, headers=headers)

    return handler


def _fetch(handler, feed, store, prepare=None, **kwargs):
    async def main():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, follow_redirects=True) as client:
            job = FeedUpdateJob(feed, store, client=client, **kwargs)
            if prepare is not None:
                prepare(job)
            await job.run()
            return job

    return asyncio.run(main())


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def feed(store):
    return store.new_feed(FEED_URL)


def test_successful_update(store, feed):
    done = []
    job = _fetch(
        _respond(ETag='"v1"'),
        feed,
        store,
        prepare=lambda job: job.parse_done.append(done.append),
    )

    assert job.status is JobStatus.SUCCESS
    assert job.last_exception is None
    assert job.content_type == "application/rss+xml; charset=utf-8"
    assert done == [job]
    assert feed.get_prop(props.ETAG) == '"v1"'
    assert feed.get_prop(props.NAME) == "Example"
    assert not feed.has_prop(props.UPDATE_STATUS)
    assert feed.has_prop(props.LAST_UPDATE_TIME)
    assert len(feed.get_links(props.LINK_RSS_ITEM, props.ITEM)) == 1


def test_missing_etag_clears_stored_one(store, feed):
    feed.set_prop(props.ETAG, '"old"')

    def handler(request):
        return httpx.Response(200, content=RSS)

    _fetch(handler, feed, store)
    assert not feed.has_prop(props.ETAG)


def test_channel_only_update_does_not_store_etag(store, feed):
    def handler(request):
        if request.headers.get("If-None-Match") == '"v1"':
            return httpx.Response(304)
        return httpx.Response(200, content=RSS, headers={"ETag": '"v1"'})

    first = _fetch(handler, feed, store, parse_items=False)
    assert first.status is JobStatus.SUCCESS
    assert not feed.has_prop(props.ETAG)
    assert feed.get_links(props.LINK_RSS_ITEM, props.ITEM) == []

    second = _fetch(handler, feed, store)
    assert second.status is JobStatus.SUCCESS
    assert feed.get_prop(props.ETAG) == '"v1"'
    assert len(feed.get_links(props.LINK_RSS_ITEM, props.ITEM)) == 1


@pytest.mark.parametrize("status_code", [304, 412])
def test_not_modified(store, feed, status_code):
    feed.set_prop(props.ETAG, '"v1"')
    sent = []
    parsed = []

    def handler(request):
        sent.append(request.headers.get("If-None-Match"))
        return httpx.Response(status_code)

    job = _fetch(handler, feed, store, prepare=lambda job: job.item_parsed.append(parsed.append))

    assert job.status is JobStatus.NOT_MODIFIED
    assert sent == ['"v1"']
    assert parsed == []
    assert not feed.has_prop(props.UPDATE_STATUS)


def test_html_page_is_reported(store, feed):
    page = b"<html><head><title>Blog</title></head><body><p>hi<br></body></html>"
    job = _fetch(_respond(page, **{"Content-Type": "text/html; charset=utf-8"}), feed, store)

    assert job.status is JobStatus.FOUND_HTML
    assert feed.get_prop(props.UPDATE_STATUS).startswith("Found HTML page")


def test_html_without_html_content_type_is_sniffed(store, feed):
    page = b"<!DOCTYPE html>\n<html><body><p>hi<br></body></html>"
    job = _fetch(_respond(page, **{"Content-Type": "application/octet-stream"}), feed, store)
    assert job.status is JobStatus.FOUND_HTML


def test_html_sniffing_can_be_disabled(store, feed):
    page = b"<html><body><p>hi<br></body></html>"
    job = _fetch(
        _respond(page, **{"Content-Type": "text/html"}),
        feed,
        store,
        settings=FetchSettings(accept_html_if_xml_error=False),
    )
    assert job.status is JobStatus.XML_ERROR


def test_malformed_feed(store, feed):
    job = _fetch(_respond(b"<rss><channel><item></channel></rss>"), feed, store)

    assert job.status is JobStatus.XML_ERROR
    assert job.last_exception is not None
    assert feed.get_prop(props.UPDATE_STATUS).startswith("XML error: ")


def test_xml_that_is_not_a_feed(store, feed):
    opml = b"<?xml version='1.0'?><opml version='1.0'><body/></opml>"
    job = _fetch(_respond(opml, **{"Content-Type": "text/xml"}), feed, store)

    assert job.status is JobStatus.FOUND_XML
    assert feed.get_prop(props.UPDATE_STATUS) == "Not an RSS or Atom feed"


def test_xhtml_page_is_found_html(store, feed):
    page = b'<html xmlns="http://www.w3.org/1999/xhtml"><head><title>x</title></head><body/></html>'
    job = _fetch(_respond(page, **{"Content-Type": "application/xhtml+xml"}), feed, store)
    assert job.status is JobStatus.FOUND_HTML


def test_server_error(store, feed):
    job = _fetch(_respond(b"oops", status_code=500), feed, store)

    assert job.status is JobStatus.HTTP_ERROR
    assert isinstance(job.last_exception, httpx.HTTPStatusError)
    assert feed.get_prop(props.UPDATE_STATUS).startswith("HTTP error: ")


def test_connection_error(store, feed):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    job = _fetch(handler, feed, store)

    assert job.status is JobStatus.HTTP_ERROR
    assert isinstance(job.last_exception, httpx.ConnectError)


def test_timeout(store, feed):
    async def handler(request):
        await asyncio.sleep(1)
        return httpx.Response(200, content=RSS)

    job = _fetch(handler, feed, store, settings=FetchSettings(timeout=0.05))

    assert job.status is JobStatus.HTTP_ERROR
    assert isinstance(job.last_exception, FeedTimeoutError)
    assert not feed.get_links(props.LINK_RSS_ITEM)


def test_request_headers(store, feed):
    feed.set_prop(props.HTTP_USER_NAME, "user")
    feed.set_prop(props.HTTP_PASSWORD, "secret")
    feed.set_prop(props.DISABLE_COMPRESSION, True)
    seen = []

    def handler(request):
        seen.append(request.headers)
        return httpx.Response(200, content=RSS)

    _fetch(handler, feed, store, settings=FetchSettings(user_agent="test-agent/1.0"))

    (headers,) = seen
    assert headers["Authorization"] == "Basic dXNlcjpzZWNyZXQ="
    assert headers["Accept-Encoding"] == "identity"
    assert headers["User-Agent"] == "test-agent/1.0"
    assert "If-None-Match" not in headers


def test_download_progress(store, feed):
    progress = []
    _fetch(
        _respond(),
        feed,
        store,
        prepare=lambda job: job.download_progress.append(lambda job, p: progress.append(p)),
    )

    assert progress
    assert progress[-1].current == len(RSS)
    assert progress[-1].total == len(RSS)


def test_download_progress_text():
    assert str(DownloadProgress(2048, 4096)) == "Downloading (2K/4K)..."
    assert str(DownloadProgress(3072)) == "Downloading (3K)..."


def test_permanent_redirect_updates_url(store, feed):
    def handler(request):
        if request.url.path == "/feed.xml":
            return httpx.Response(301, headers={"Location": "http://example.com/new.xml"})
        return httpx.Response(200, content=RSS)

    job = _fetch(handler, feed, store)

    assert job.status is JobStatus.SUCCESS
    assert feed.get_prop(props.URL) == "http://example.com/new.xml"


def test_temporary_redirect_keeps_url(store, feed):
    def handler(request):
        if request.url.path == "/feed.xml":
            return httpx.Response(302, headers={"Location": "http://example.com/tmp.xml"})
        return httpx.Response(200, content=RSS)

    _fetch(handler, feed, store)
    assert feed.get_prop(props.URL) == FEED_URL


def test_deleted_feed_is_not_fetched(store, feed):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, content=RSS)

    store.delete(feed)
    job = _fetch(handler, feed, store)

    assert job.status is JobStatus.FEED_DELETED
    assert requests == []


def test_job_runs_once(store, feed):
    async def main():
        transport = httpx.MockTransport(_respond())
        async with httpx.AsyncClient(transport=transport) as client:
            job = FeedUpdateJob(feed, store, client=client)
            await job.run()
            with pytest.raises(RuntimeError):
                await job.run()

    asyncio.run(main())


def test_update_feeds_isolates_failures(store):
    good = store.new_feed("http://good.example.com/feed.xml")
    bad = store.new_feed("http://bad.example.com/feed.xml")

    def handler(request):
        if request.url.host == "bad.example.com":
            return httpx.Response(500)
        return httpx.Response(200, content=RSS)

    async def main():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as client:
            return await update_feeds(
                [good, bad], store, client=client, settings=FetchSettings(max_concurrent_jobs=1)
            )

    jobs = asyncio.run(main())

    assert [job.status for job in jobs] == [JobStatus.SUCCESS, JobStatus.HTTP_ERROR]
    assert len(good.get_links(props.LINK_RSS_ITEM, props.ITEM)) == 1
    assert bad.get_links(props.LINK_RSS_ITEM, props.ITEM) == []
