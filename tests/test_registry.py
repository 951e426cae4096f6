from feedingest import ElementParserRegistry, Extension, MemoryStore, props
from feedingest.elements import (
    CopyProperty,
    DateField,
    FeedName,
    PersonField,
    TextConstruct,
)
from feedingest.parser import FeedParser


def test_lookup_is_case_insensitive_on_local_name():
    registry = ElementParserRegistry.with_defaults()
    assert isinstance(registry.lookup("rss", "item", "", "PUBDATE"), DateField)
    assert isinstance(registry.lookup("rss", "item", props.NS_RSS10, "pubDate"), DateField)


def test_lookup_is_case_sensitive_on_namespace():
    registry = ElementParserRegistry.with_defaults()
    assert isinstance(registry.lookup("rss", "item", props.NS_DC, "creator"), PersonField)
    assert registry.lookup("rss", "item", props.NS_DC.upper(), "creator") is None


def test_tables_are_separate():
    registry = ElementParserRegistry.with_defaults()
    assert isinstance(registry.lookup("atom", "item", props.NS_ATOM10, "content"), TextConstruct)
    assert registry.lookup("rss", "item", props.NS_ATOM10, "content") is None
    assert registry.lookup("atom", "channel", props.NS_ATOM10, "entry") is None


def test_later_registration_replaces():
    registry = ElementParserRegistry()
    first = CopyProperty(props.SUBJECT)
    second = CopyProperty(props.SUMMARY)
    registry.register("rss", "item", "", "title", first)
    registry.register("rss", "item", "", "Title", second)
    assert registry.lookup("rss", "item", "", "title") is second


def test_ensure_rss_namespace_registers_once():
    registry = ElementParserRegistry.with_defaults()
    ns = "http://example.com/custom-rss"
    assert registry.lookup("rss", "channel", ns, "title") is None
    assert registry.ensure_rss_namespace(ns) is True
    assert registry.ensure_rss_namespace(ns) is False
    assert isinstance(registry.lookup("rss", "channel", ns, "title"), FeedName)


def test_unknown_channel_namespace_parses_as_rss():
    xml = (
        '<rss><channel xmlns="http://example.com/custom-rss">'
        "<title>Custom</title>"
        "<item><title>One</title><guid>1</guid></item>"
        "</channel></rss>"
    )
    store = MemoryStore()
    feed = store.new_feed("http://example.com/feed")
    FeedParser(feed, store).parse(xml)
    assert feed.get_prop(props.NAME) == "Custom"
    items = feed.get_links(props.LINK_RSS_ITEM, props.ITEM)
    assert [i.get_prop(props.SUBJECT) for i in items] == ["One"]


def test_extension_parser_receives_item():
    ns = "http://example.com/rating"
    seen = []

    def rating(target, element, context):
        seen.append(context.feed)
        target.set_prop("rating", int(element.text))

    registry = ElementParserRegistry.with_defaults()
    registry.register_item_element_parser("rss", ns, "rating", Extension(rating))
    registry.register_channel_element_parser(
        "rss", ns, "owner", CopyProperty(props.AUTHOR)
    )

    xml = (
        f'<rss xmlns:r="{ns}"><channel><r:owner>Ann</r:owner>'
        "<item><guid>1</guid><r:rating>4</r:rating></item>"
        "</channel></rss>"
    )
    store = MemoryStore()
    feed = store.new_feed("http://example.com/feed")
    FeedParser(feed, store, registry).parse(xml)

    (item,) = feed.get_links(props.LINK_RSS_ITEM, props.ITEM)
    assert item.get_prop("rating") == 4
    assert seen == [feed]
    assert feed.get_prop(props.AUTHOR) == "Ann"
