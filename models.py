#!/usr/bin/env python3
"""
Data models for normalized feeds.

Every supported format (RSS 2.0, Atom, JSON Feed) is normalized into a
`ParsedFeed`. Models serialize to plain dicts with `to_dict()`; dates are
emitted as ISO 8601 strings, and the resulting dicts are accepted back by the
normalizer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from errors import ErrorCategory


class FeedType(str, Enum):
    RSS = "rss"
    ATOM = "atom"
    JSON = "json"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class FeedImage:
    url: str
    title: str = ""
    link: str = ""
    width: Optional[int] = None
    height: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "link": self.link,
            "width": self.width,
            "height": self.height,
        }


@dataclass
class Enclosure:
    url: str
    type: Optional[str] = None
    length: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "type": self.type, "length": self.length}


@dataclass
class FeedMetadata:
    """Channel-level information. `title` and `link` are never None."""
    title: str = ""
    description: Optional[str] = None
    link: str = ""
    language: Optional[str] = None
    copyright: Optional[str] = None
    managing_editor: Optional[str] = None
    web_master: Optional[str] = None
    pub_date: Optional[datetime] = None
    last_build_date: Optional[datetime] = None
    image: Optional[FeedImage] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "link": self.link,
            "language": self.language,
            "copyright": self.copyright,
            "managing_editor": self.managing_editor,
            "web_master": self.web_master,
            "pub_date": _iso(self.pub_date),
            "last_build_date": _iso(self.last_build_date),
            "image": self.image.to_dict() if self.image else None,
        }


@dataclass
class FeedItem:
    """A single entry. `title` and `link` are never None."""
    title: str = ""
    link: str = ""
    description: Optional[str] = None
    content: Optional[str] = None
    pub_date: Optional[datetime] = None
    guid: Optional[str] = None
    author: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    image: Optional[str] = None
    enclosure: Optional[Enclosure] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "link": self.link,
            "description": self.description,
            "content": self.content,
            "pub_date": _iso(self.pub_date),
            "guid": self.guid,
            "author": self.author,
            "categories": list(self.categories),
            "image": self.image,
            "enclosure": self.enclosure.to_dict() if self.enclosure else None,
        }


@dataclass
class ParsedFeed:
    type: FeedType
    metadata: FeedMetadata
    items: List[FeedItem] = field(default_factory=list)
    # Original document text, kept for passthrough/debugging only
    raw: Optional[str] = None

    def to_dict(self, include_raw: bool = True) -> Dict[str, Any]:
        data = {
            "type": self.type.value,
            "metadata": self.metadata.to_dict(),
            "items": [item.to_dict() for item in self.items],
        }
        if include_raw:
            data["raw"] = self.raw
        return data


@dataclass
class FeedParseResult:
    success: bool
    feed: Optional[ParsedFeed] = None
    error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None

    @classmethod
    def ok(cls, feed: ParsedFeed) -> "FeedParseResult":
        return cls(success=True, feed=feed)

    @classmethod
    def failure(cls, error: str, category: ErrorCategory) -> "FeedParseResult":
        return cls(success=False, error=error, error_category=category)

    def to_dict(self, include_raw: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.feed is not None:
            data["feed"] = self.feed.to_dict(include_raw=include_raw)
        if self.error is not None:
            data["error"] = self.error
            data["error_category"] = self.error_category.value if self.error_category else None
        return data
