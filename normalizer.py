#!/usr/bin/env python3
"""
Format normalizer.

Maps feedparser documents (RSS/Atom) and JSON Feed documents onto the
canonical `ParsedFeed` model. Field lookups accept feedparser keys, RSS
camelCase keys and the canonical snake_case keys emitted by `to_dict()`, so a
normalized feed can be fed back through the normalizer unchanged.
"""

from calendar import timegm
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from time import struct_time
from typing import Any, Iterable, List, Mapping, Optional

from bs4 import BeautifulSoup
from feedparser.datetimes import _parse_date as feedparser_parse_date

from config import get_logger
from models import Enclosure, FeedImage, FeedItem, FeedMetadata, FeedType, ParsedFeed
from telemetry import trace_span

logger = get_logger("normalizer")

JSON_FEED_VERSION_PREFIX = "https://jsonfeed.org"

CUSTOM_DATE_FORMATS = (
    "%d %b %Y %H:%M:%S %z",
    "%d %b %Y %H:%M:%S %Z",
    "%d %b %Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)


# ----------------------------------------------------------------------
# Field access helpers
# ----------------------------------------------------------------------
def _get(source: Any, field: str) -> Any:
    """Fetch a field from feedparser dicts, plain dicts or objects."""
    if source is None or not field:
        return None
    getter = getattr(source, 'get', None)
    if callable(getter):
        try:
            value = getter(field)
        except (KeyError, TypeError):
            value = None
        if value is not None:
            return value
    return getattr(source, field, None) if not isinstance(source, Mapping) else None


def _first(source: Any, fields: Iterable[str]) -> Any:
    """Return the first non-empty value among `fields`."""
    for field in fields:
        value = _get(source, field)
        if value not in (None, '', [], {}):
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Mapping):
        value = _first(value, ('name', 'value', 'href', 'url', 'email'))
        if value is None:
            return None
    text = str(value).strip()
    return text or None


def _to_int(value: Any) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


# ----------------------------------------------------------------------
# Dates
# ----------------------------------------------------------------------
def parse_date(value: Any) -> Optional[datetime]:
    """Convert assorted date representations into an aware datetime.

    Unparseable values yield None; date validity is not the parser's concern.
    """
    if value is None or value == '':
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, struct_time) or (isinstance(value, (list, tuple)) and len(value) >= 6):
        # feedparser *_parsed values are UTC struct_time
        try:
            return datetime.fromtimestamp(timegm(tuple(value)), tz=timezone.utc)
        except (OverflowError, ValueError, OSError, TypeError):
            return None

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value <= 0:
            return None
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, ValueError, OSError):
            return None

    if isinstance(value, str):
        return _parse_date_string(value.strip())

    return None


def _parse_date_string(date_str: str) -> Optional[datetime]:
    if not date_str:
        return None
    parsers = (
        _parse_iso,
        _parse_with_email_utils,
        _parse_with_feedparser,
        _parse_with_custom_formats,
    )
    for parser in parsers:
        parsed = parser(date_str)
        if parsed is not None:
            return parsed
    logger.debug(f"Unparseable date '{date_str}'")
    return None


def _parse_iso(date_str: str) -> Optional[datetime]:
    try:
        dt = datetime.fromisoformat(date_str)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _parse_with_email_utils(date_str: str) -> Optional[datetime]:
    try:
        dt = parsedate_to_datetime(date_str)
    except (TypeError, ValueError, OverflowError, IndexError):
        return None
    if dt is None:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _parse_with_feedparser(date_str: str) -> Optional[datetime]:
    try:
        time_struct = feedparser_parse_date(date_str)
    except (ValueError, TypeError, OverflowError, IndexError):
        return None
    if not time_struct:
        return None
    return parse_date(time_struct)


def _parse_with_custom_formats(date_str: str) -> Optional[datetime]:
    for fmt in CUSTOM_DATE_FORMATS:
        try:
            dt = datetime.strptime(date_str, fmt)
        except (ValueError, TypeError):
            continue
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return None


def _date_field(source: Any, fields: Iterable[str]) -> Optional[datetime]:
    """Return the first field that parses into a date."""
    for field in fields:
        parsed = parse_date(_get(source, field))
        if parsed is not None:
            return parsed
    return None


# ----------------------------------------------------------------------
# HTML helpers
# ----------------------------------------------------------------------
def _collapse(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    return " ".join(text.split()) or None


def html_to_text(html: Optional[str]) -> Optional[str]:
    """Strip markup and collapse whitespace into a plain-text snippet."""
    if not html:
        return None
    if '<' in html or '&' in html:
        return _collapse(BeautifulSoup(html, 'html.parser').get_text(" "))
    return _collapse(html)


def extract_image(html: Optional[str]) -> Optional[str]:
    """Best-effort lookup of the first <img src> in an HTML fragment."""
    if not html or '<img' not in html.lower():
        return None
    img = BeautifulSoup(html, 'html.parser').find('img', src=True)
    if img is None:
        return None
    src = str(img['src']).strip()
    return src or None


# ----------------------------------------------------------------------
# RSS / Atom (feedparser) and canonical dicts
# ----------------------------------------------------------------------
def detect_feed_type(parsed: Any) -> FeedType:
    """Atom when the feed's self link URL contains "atom", otherwise RSS."""
    feed = _get(parsed, 'feed') or {}
    for link in _get(feed, 'links') or []:
        if _get(link, 'rel') == 'self' and 'atom' in str(_get(link, 'href') or ''):
            return FeedType.ATOM
    return FeedType.RSS


def _self_link(feed: Any) -> Optional[str]:
    for link in _get(feed, 'links') or []:
        if _get(link, 'rel') == 'self':
            return _text(_get(link, 'href'))
    return None


def _normalize_image(image: Any, feed_title: str, feed_link: str) -> Optional[FeedImage]:
    if not image:
        return None
    if isinstance(image, str):
        return FeedImage(url=image, title=feed_title, link=feed_link)
    url = _text(_first(image, ('url', 'href')))
    if not url:
        return None
    return FeedImage(
        url=url,
        title=_text(_get(image, 'title')) or feed_title,
        link=_text(_get(image, 'link')) or feed_link,
        width=_to_int(_get(image, 'width')),
        height=_to_int(_get(image, 'height')),
    )


def normalize_metadata(feed: Any) -> FeedMetadata:
    """Normalize channel/feed-level fields."""
    title = _text(_get(feed, 'title')) or ""
    link = _text(_get(feed, 'link')) or _self_link(feed) or ""
    return FeedMetadata(
        title=title,
        description=_text(_first(feed, ('description', 'subtitle'))),
        link=link,
        language=_text(_get(feed, 'language')),
        copyright=_text(_first(feed, ('copyright', 'rights'))),
        managing_editor=_text(_first(feed, ('managing_editor', 'managingEditor', 'author'))),
        web_master=_text(_first(feed, ('web_master', 'webMaster', 'publisher'))),
        pub_date=_date_field(feed, ('pub_date', 'pubDate', 'published_parsed', 'published')),
        last_build_date=_date_field(feed, ('last_build_date', 'lastBuildDate', 'updated_parsed', 'updated')),
        image=_normalize_image(_get(feed, 'image'), title, link),
    )


def _item_content(entry: Any) -> Optional[str]:
    content = _first(entry, ('content', 'content_encoded', 'content:encoded'))
    if isinstance(content, (list, tuple)):
        for part in content:
            value = _get(part, 'value')
            if value:
                return str(value)
        content = None
    elif isinstance(content, Mapping):
        content = _get(content, 'value')
    if content:
        return str(content)
    # feedparser keeps the RSS <description> HTML as `summary`
    summary = _get(entry, 'summary')
    return str(summary) if summary else None


def _item_categories(entry: Any) -> List[str]:
    raw = _first(entry, ('categories', 'tags')) or []
    if isinstance(raw, (str, Mapping)):
        raw = [raw]
    categories: List[str] = []
    seen = set()
    for category in raw:
        if isinstance(category, (list, tuple)):
            # feedparser exposes RSS categories as (domain, term) pairs
            category = category[-1] if category else None
        label = _text(_first(category, ('term', 'label'))) if isinstance(category, Mapping) else _text(category)
        if label and label not in seen:
            seen.add(label)
            categories.append(label)
    return categories


def _item_image(entry: Any, content: Optional[str]) -> Optional[str]:
    thumbnail = _first(entry, ('media_thumbnail', 'thumbnail'))
    if isinstance(thumbnail, (list, tuple)):
        thumbnail = thumbnail[0] if thumbnail else None
    url = _text(thumbnail)
    if url:
        return url

    url = _text(_get(entry, 'image'))
    if url:
        return url

    for media in _get(entry, 'media_content') or []:
        medium = str(_get(media, 'medium') or '')
        mime = str(_get(media, 'type') or '')
        if medium == 'image' or mime.startswith('image/'):
            url = _text(_get(media, 'url'))
            if url:
                return url

    return extract_image(content) or extract_image(_get(entry, 'summary'))


def _item_enclosure(entry: Any) -> Optional[Enclosure]:
    enclosure = _get(entry, 'enclosure')
    if not enclosure:
        enclosures = _get(entry, 'enclosures') or []
        enclosure = enclosures[0] if enclosures else None
    if not enclosure:
        return None
    url = _text(_first(enclosure, ('url', 'href')))
    if not url:
        return None
    return Enclosure(
        url=url,
        type=_text(_get(enclosure, 'type')),
        length=_to_int(_get(enclosure, 'length')),
    )


def _item_description(entry: Any, content: Optional[str]) -> Optional[str]:
    """Plain-text snippet for an entry.

    Snippet and summary sources are markup (feedparser keeps the RSS
    <description> as `summary`); a canonical `description` is already plain
    text and is only trimmed, so literal "<tag>" text survives.
    """
    snippet = _first(entry, ('content_snippet', 'contentSnippet'))
    if snippet is not None:
        return html_to_text(str(snippet))

    summary = _get(entry, 'summary')
    if summary:
        if _get(_get(entry, 'summary_detail'), 'type') == 'text/plain':
            return _collapse(str(summary))
        return html_to_text(str(summary))

    description = _text(_get(entry, 'description'))
    if description:
        return description
    return html_to_text(content)


def normalize_item(entry: Any) -> FeedItem:
    """Normalize one RSS/Atom entry (or a canonical item dict)."""
    link = _text(_get(entry, 'link')) or ""
    content = _item_content(entry)
    description = _item_description(entry, content)
    guid = _text(_first(entry, ('guid', 'id'))) or link or None
    return FeedItem(
        title=_text(_get(entry, 'title')) or "",
        link=link,
        description=description,
        content=content,
        pub_date=_date_field(entry, ('pub_date', 'pubDate', 'published_parsed', 'published', 'updated_parsed', 'updated')),
        guid=guid,
        author=_text(_first(entry, ('author', 'creator', 'dc_creator'))),
        categories=_item_categories(entry),
        image=_item_image(entry, content),
        enclosure=_item_enclosure(entry),
    )


@trace_span(
    "normalize_xml_feed",
    tracer_name="normalizer",
    attr_from_args=lambda parsed, feed_type, raw=None: {
        "feed.type": feed_type.value,
        "feed.entries.count": len(_get(parsed, 'entries') or []),
    },
)
def normalize_xml_feed(parsed: Any, feed_type: FeedType, raw: Optional[str] = None) -> ParsedFeed:
    """Normalize a feedparser result."""
    return ParsedFeed(
        type=feed_type,
        metadata=normalize_metadata(_get(parsed, 'feed') or {}),
        items=[normalize_item(entry) for entry in _get(parsed, 'entries') or []],
        raw=raw,
    )


# ----------------------------------------------------------------------
# JSON Feed
# ----------------------------------------------------------------------
def is_json_feed(document: Any) -> bool:
    if not isinstance(document, Mapping):
        return False
    return str(document.get('version') or '').startswith(JSON_FEED_VERSION_PREFIX)


def normalize_json_feed_item(item: Mapping) -> FeedItem:
    link = _text(_first(item, ('url', 'external_url'))) or ""
    author = None
    authors = item.get('authors')
    if isinstance(authors, list) and authors:
        author = _text(authors[0])
    if author is None:
        # JSON Feed 1.0 used a single `author` object
        author = _text(item.get('author'))

    enclosure = None
    attachments = item.get('attachments')
    if isinstance(attachments, list) and attachments and isinstance(attachments[0], Mapping):
        attachment = attachments[0]
        url = _text(attachment.get('url'))
        if url:
            enclosure = Enclosure(
                url=url,
                type=_text(attachment.get('mime_type')),
                length=_to_int(attachment.get('size_in_bytes')),
            )

    tags = item.get('tags')
    categories: List[str] = []
    if isinstance(tags, list):
        for tag in tags:
            label = _text(tag)
            if label and label not in categories:
                categories.append(label)

    content = _first(item, ('content_html', 'content_text'))

    return FeedItem(
        title=_text(item.get('title')) or "",
        link=link,
        description=html_to_text(_text(item.get('summary'))),
        content=str(content) if content else None,
        pub_date=_date_field(item, ('date_published', 'date_modified')),
        guid=_text(item.get('id')) or link or None,
        author=author,
        categories=categories,
        image=_text(_first(item, ('image', 'banner_image'))),
        enclosure=enclosure,
    )


@trace_span("normalize_json_feed", tracer_name="normalizer")
def normalize_json_feed(document: Mapping, raw: Optional[str] = None) -> ParsedFeed:
    """Normalize a JSON Feed (1.0 or 1.1) document."""
    title = _text(document.get('title')) or ""
    link = _text(document.get('home_page_url')) or _text(document.get('feed_url')) or ""
    icon = _text(_first(document, ('icon', 'favicon')))
    items = document.get('items')
    if not isinstance(items, list):
        items = []
    return ParsedFeed(
        type=FeedType.JSON,
        metadata=FeedMetadata(
            title=title,
            description=_text(document.get('description')),
            link=link,
            language=_text(document.get('language')),
            image=FeedImage(url=icon, title=title, link=link) if icon else None,
        ),
        items=[normalize_json_feed_item(item) for item in items if isinstance(item, Mapping)],
        raw=raw,
    )
