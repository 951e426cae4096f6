"""Property names, link types, resource types and XML namespaces."""

from __future__ import annotations

# Resource types
FEED = "RSSFeed"
ITEM = "RSSItem"
CONTACT = "Contact"
CATEGORY = "Category"
LINKED_POST_STUB = "RSSLinkedPost"

# Common properties
NAME = "name"
SUBJECT = "subject"
LONG_BODY = "long_body"
LONG_BODY_IS_HTML = "long_body_is_html"
SIZE = "size"
DATE = "date"
IS_UNREAD = "is_unread"
URL = "url"
EMAIL = "email"

# Feed properties
ORIGINAL_NAME = "original_name"
HOME_PAGE = "home_page"
DESCRIPTION = "description"
PUB_DATE = "pub_date"
LINK_BASE = "link_base"
AUTHOR = "author"
IMAGE_URL = "image_url"
IMAGE_TITLE = "image_title"
IMAGE_LINK = "image_link"
UPDATE_PERIOD = "update_period"
UPDATE_FREQUENCY = "update_frequency"
ETAG = "etag"
HTTP_USER_NAME = "http_user_name"
HTTP_PASSWORD = "http_password"
ALLOW_EQUAL_POSTS = "allow_equal_posts"
UNIQUE_LINKS = "unique_links"
DISABLE_COMPRESSION = "disable_compression"
DELETED_ITEM_HASHES = "deleted_item_hashes"
LAST_ITEM_INDEX = "last_item_index"
LAST_UPDATE_TIME = "last_update_time"
UPDATE_STATUS = "update_status"

# Item properties
GUID = "guid"
LINK = "link"
SUMMARY = "summary"
DATE_MODIFIED = "date_modified"
RSS_CATEGORY = "rss_category"
COMMENT_URL = "comment_url"
COMMENT_COUNT = "comment_count"
COMMENT_RSS = "comment_rss"
WFW_COMMENT = "wfw_comment"
SOURCE_TAG = "source_tag"
SOURCE_TAG_URL = "source_tag_url"
ENCLOSURE_URL = "enclosure_url"
ENCLOSURE_SIZE = "enclosure_size"
ENCLOSURE_TYPE = "enclosure_type"
ENCLOSURE_STATE = "enclosure_downloading_state"
CONTENT_HASH = "content_hash"
INDEX_IN_FEED = "index_in_feed"
DOWNLOAD_DATE = "download_date"
LINK_LIST = "link_list"

# Enclosure downloading states
ENCLOSURE_NOT_DOWNLOADED = "not_downloaded"

# Link types
LINK_RSS_ITEM = "RSSItem"
LINK_FROM = "From"
LINK_WEBLOG = "Weblog"
LINK_AUTHOR_EMAIL = "AuthorEmail"
LINK_CATEGORY = "Category"
LINK_LINKED_POST = "LinkedPost"
LINK_ITEM_COMMENT = "ItemComment"
LINK_FEED_COMMENT = "FeedComment"
LINK_ITEM_COMMENT_FEED = "ItemCommentFeed"
LINK_FEED_COMMENT_TO_FEED = "FeedComment2Feed"

# Namespaces
NS_RSS09 = "http://my.netscape.com/rdf/simple/0.9/"
NS_RSS091 = "http://my.netscape.com/publish/formats/rss-0.91.dtd"
NS_RSS093 = "http://backend.userland.com/rss093"
NS_RSS10 = "http://purl.org/rss/1.0/"
NS_RSS10_WWW = "http://www.purl.org/rss/1.0/"
NS_RSS20 = "http://backend.userland.com/rss2"
NS_DC = "http://purl.org/dc/elements/1.1/"
NS_XHTML = "http://www.w3.org/1999/xhtml"
NS_CONTENT = "http://purl.org/rss/1.0/modules/content/"
NS_SYNDICATION = "http://purl.org/rss/1.0/modules/syndication/"
NS_SLASH = "http://purl.org/rss/1.0/modules/slash/"
NS_WFW = "http://wellformedweb.org/CommentAPI/"
NS_ATOM03 = "http://purl.org/atom/ns#"
NS_ATOM10 = "http://www.w3.org/2005/Atom"
NS_RDF = "http://www.w3.org/1999/02/22-rdf-syntax-ns#"
NS_XML = "http://www.w3.org/XML/1998/namespace"

RSS_NAMESPACES: tuple[str, ...] = (
    "",
    NS_RSS09,
    NS_RSS091,
    NS_RSS093,
    NS_RSS10,
    NS_RSS10_WWW,
    NS_RSS20,
)
ATOM_NAMESPACES: tuple[str, ...] = (NS_ATOM03, NS_ATOM10)

# Prefixes resolved when a feed uses them without declaring them
LOOSE_PREFIXES: dict[str, str] = {
    "dc": NS_DC,
    "content": NS_CONTENT,
    "sy": NS_SYNDICATION,
    "slash": NS_SLASH,
    "wfw": NS_WFW,
    "rdf": NS_RDF,
    "atom": NS_ATOM10,
    "xhtml": NS_XHTML,
    "rss": NS_RSS20,
}
