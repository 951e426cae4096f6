import datetime

import pytest

from feedingest import FeedIntegrityError, MemoryStore, props
from feedingest.merge import UNIQUE_LINKS_THRESHOLD, ItemMerger, content_hash, normalize_body

FEED_URL = "http://example.com/feed.xml"
PARSE_TIME = datetime.datetime(2022, 6, 1, 8, 0, tzinfo=datetime.timezone.utc)


def _item(store, **values):
    item = store.new_transient(props.ITEM)
    for name, value in values.items():
        item.set_prop(name, value)
    return item


def _items(feed):
    return feed.get_links(props.LINK_RSS_ITEM, props.ITEM)


def _merge_all(feed, store, *items, **kwargs):
    merger = ItemMerger(feed, store, parse_time=PARSE_TIME, **kwargs)
    return merger, [merger.merge(item) for item in items]


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def feed(store):
    return store.new_feed(FEED_URL)


def test_merging_same_item_twice_is_idempotent(store, feed):
    _merge_all(feed, store, _item(store, guid="g1", subject="Hello"))
    merger, _ = _merge_all(feed, store, _item(store, guid="g1", subject="Hello"))

    assert merger.added == 0
    assert merger.updated == 1
    assert len(_items(feed)) == 1


def test_guid_match_updates_in_place_and_keeps_read_state(store, feed):
    _, (stored,) = _merge_all(feed, store, _item(store, guid="g1", subject="Old", long_body="a"))
    stored.set_prop(props.IS_UNREAD, False)

    _, (updated,) = _merge_all(
        feed, store, _item(store, guid="g1", subject="New", long_body="b", comment_count=3)
    )

    assert updated is stored
    assert stored.get_prop(props.SUBJECT) == "New"
    assert stored.get_prop(props.LONG_BODY) == "b"
    assert stored.get_prop(props.COMMENT_COUNT) == 3
    assert stored.get_prop(props.IS_UNREAD) is False
    assert stored.get_prop(props.CONTENT_HASH) == content_hash("New", "b")


def test_guid_does_not_fall_back_to_link(store, feed):
    _merge_all(feed, store, _item(store, guid="g1", subject="One", link="http://a/1"))
    _merge_all(feed, store, _item(store, guid="g2", subject="Two", link="http://a/1"))
    assert len(_items(feed)) == 2


def test_link_identity_once_enough_unique_links(store, feed):
    first = [
        _item(store, subject=f"Post {n}", link=f"http://a/{n}")
        for n in range(UNIQUE_LINKS_THRESHOLD)
    ]
    _merge_all(feed, store, *first)
    assert not feed.has_prop(props.UNIQUE_LINKS)

    merger, (updated,) = _merge_all(
        feed, store, _item(store, subject="Post 0 (edited)", link="http://a/0")
    )

    assert feed.get_prop(props.UNIQUE_LINKS) == 1
    assert merger.updated == 1
    assert updated.get_prop(props.SUBJECT) == "Post 0 (edited)"
    assert len(_items(feed)) == UNIQUE_LINKS_THRESHOLD


def test_duplicate_links_disable_link_identity(store, feed):
    _merge_all(
        feed,
        store,
        _item(store, subject="a", link="http://a/same"),
        _item(store, subject="b", link="http://a/same"),
    )
    assert len(_items(feed)) == 2

    _merge_all(feed, store, _item(store, subject="c", link="http://a/same"))

    assert feed.get_prop(props.UNIQUE_LINKS) == 0
    assert len(_items(feed)) == 3


def test_identical_items_in_one_document_are_both_kept(store, feed):
    def twins():
        return [
            _item(store, subject="Same", long_body="body"),
            _item(store, subject="Same", long_body="body"),
        ]

    _merge_all(feed, store, *twins())
    assert len(_items(feed)) == 2

    merger, _ = _merge_all(feed, store, *twins())
    assert merger.updated == 2
    assert len(_items(feed)) == 2


def test_date_identity_without_link(store, feed):
    date = datetime.datetime(2021, 3, 1, tzinfo=datetime.timezone.utc)
    _merge_all(feed, store, _item(store, subject="First", date=date))
    _merge_all(feed, store, _item(store, subject="Renamed", date=date))

    (item,) = _items(feed)
    assert item.get_prop(props.SUBJECT) == "Renamed"


def test_equal_content_merges_unless_allowed(store, feed):
    _merge_all(feed, store, _item(store, guid="g1", subject="S", long_body="B"))
    _merge_all(feed, store, _item(store, guid="g2", subject="S", long_body="B"))
    assert len(_items(feed)) == 1

    other = store.new_feed("http://example.com/other.xml", allow_equal_posts=True)
    _merge_all(other, store, _item(store, guid="g1", subject="S", long_body="B"))
    _merge_all(other, store, _item(store, guid="g2", subject="S", long_body="B"))
    assert len(_items(other)) == 2


def test_content_hash_is_not_matched_across_feeds(store, feed):
    other = store.new_feed("http://example.com/other.xml")
    _merge_all(feed, store, _item(store, subject="S", long_body="B"))
    _merge_all(other, store, _item(store, subject="S", long_body="B"))
    assert len(_items(feed)) == 1
    assert len(_items(other)) == 1


def test_new_item_defaults(store, feed):
    _, (item,) = _merge_all(feed, store, _item(store, guid="g1", subject="x"))

    assert item.get_prop(props.DATE) == PARSE_TIME
    assert item.get_link(props.LINK_FROM) is feed
    assert item.get_prop(props.IS_UNREAD) is True
    assert item.get_prop(props.LONG_BODY_IS_HTML) is True
    assert item.get_prop(props.INDEX_IN_FEED) == 1
    assert feed.get_prop(props.LAST_ITEM_INDEX) == 1
    assert item.has_prop(props.DOWNLOAD_DATE)


def test_date_falls_back_to_modified_then_feed_date(store, feed):
    modified = datetime.datetime(2021, 5, 5, tzinfo=datetime.timezone.utc)
    pub_date = datetime.datetime(2021, 4, 4, tzinfo=datetime.timezone.utc)
    feed.set_prop(props.PUB_DATE, pub_date)

    _, (a, b) = _merge_all(
        feed,
        store,
        _item(store, guid="g1", subject="a", date_modified=modified),
        _item(store, guid="g2", subject="b"),
    )

    assert a.get_prop(props.DATE) == modified
    assert b.get_prop(props.DATE) == pub_date


def test_author_defaults_to_feed_contact(store, feed):
    contact = store.find_or_create_contact("ed@example.com", "Ed")
    feed.add_link(props.LINK_WEBLOG, contact)

    _, (item,) = _merge_all(feed, store, _item(store, guid="g1", subject="x"))

    assert item.get_link(props.LINK_FROM) is contact


def test_item_author_names_feed_without_author(store, feed):
    item = _item(store, guid="g1", subject="x")
    item.add_link(props.LINK_FROM, store.find_or_create_contact(None, "Ann"))

    _merge_all(feed, store, item)

    assert feed.get_prop(props.AUTHOR) == "Ann"


def test_body_links_are_resolved_and_linked(store, feed):
    _, (target,) = _merge_all(
        feed, store, _item(store, guid="g1", subject="target", link="http://example.com/x")
    )
    _, (citing,) = _merge_all(
        feed,
        store,
        _item(store, guid="g2", subject="citing", long_body='<a href="/x">see</a>'),
    )

    assert citing.get_prop(props.LONG_BODY) == '<a href="http://example.com/x">see</a>'
    assert citing.get_prop(props.LINK_LIST) == ["http://example.com/x"]
    assert citing.get_links(props.LINK_LINKED_POST) == [target]


def test_earlier_reply_is_linked_to_new_target(store, feed):
    _, (reply,) = _merge_all(
        feed,
        store,
        _item(store, guid="g1", subject="reply", long_body='<a href="http://a/later">x</a>'),
    )
    _, (later,) = _merge_all(
        feed, store, _item(store, guid="g2", subject="later", link="http://a/later")
    )

    assert later.get_links(props.LINK_LINKED_POST) == [reply]


def test_subject_defaults_from_body(store, feed):
    _, (item,) = _merge_all(feed, store, _item(store, guid="g1", summary="<p>Hello there</p>"))
    assert item.get_prop(props.SUBJECT) == "Hello there"
    assert item.get_prop(props.SIZE) == len("<p>Hello there</p>")


def test_feed_categories_are_applied(store, feed):
    category = store.new_resource(props.CATEGORY, name="Tech")
    feed.add_link(props.LINK_CATEGORY, category)

    _, (item,) = _merge_all(feed, store, _item(store, guid="g1", subject="x"))

    assert item.get_links(props.LINK_CATEGORY, props.CATEGORY) == [category]


def test_comment_feed_items_link_to_parent(store, feed):
    _, (post,) = _merge_all(feed, store, _item(store, guid="post", subject="Post"))
    comments = store.new_feed("http://example.com/post/comments.xml")
    comments.add_link(props.LINK_ITEM_COMMENT_FEED, post)
    comments.add_link(props.LINK_FEED_COMMENT_TO_FEED, feed)

    _, (comment,) = _merge_all(comments, store, _item(store, guid="c1", subject="Nice"))

    assert comment.get_links(props.LINK_ITEM_COMMENT) == [post]
    assert comment.get_links(props.LINK_FEED_COMMENT) == [feed]
    # The parent feed's own items get no comment links
    _, (other,) = _merge_all(feed, store, _item(store, guid="post2", subject="Post 2"))
    assert other.get_links(props.LINK_ITEM_COMMENT) == []


def test_item_linked_to_two_feeds_is_an_integrity_error(store, feed):
    _, (item,) = _merge_all(feed, store, _item(store, guid="g1", subject="x"))
    store.new_feed("http://example.com/other.xml").add_link(props.LINK_RSS_ITEM, item)

    with pytest.raises(FeedIntegrityError):
        _merge_all(feed, store, _item(store, guid="g1", subject="x"))


def test_failing_item_added_callback_is_logged(store, feed, caplog):
    def explode(item):
        raise ValueError("boom")

    merger, (item,) = _merge_all(
        feed, store, _item(store, guid="g1", subject="x"), item_added=[explode]
    )

    assert item in _items(feed)
    assert "boom" in caplog.text


def test_normalize_body_is_idempotent():
    body = '<img src="pics/a.png"> <a href="../b">b</a>'
    once = normalize_body(body, "http://example.com/blog/post")
    assert once == '<img src="http://example.com/blog/pics/a.png"> <a href="http://example.com/b">b</a>'
    assert normalize_body(once, "http://example.com/blog/post") == once
    assert normalize_body(body, "") == body


def test_content_hash_separates_subject_from_body():
    assert content_hash("ab", "c") != content_hash("a", "bc")
    assert content_hash("a", "b") == content_hash("a", "b")
