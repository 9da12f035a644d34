#!/usr/bin/env python3
"""
Size guard for normalized feeds.

Keeps pathological feeds (huge item lists, massive embedded content) out of
the cache. The serialized size is estimated cheaply first and only measured
exactly when the estimate comes close to the limit.
"""

import json
from typing import Optional

from config import config, get_logger, MEBIBYTE
from errors import ErrorCategory
from models import FeedParseResult, ParsedFeed

logger = get_logger("size_guard")

# Normalization overhead relative to the upstream payload
RAW_OVERHEAD_FACTOR = 1.2
# Structural (keys, quoting) overhead relative to the string fields
FIELD_OVERHEAD_FACTOR = 1.3
# Estimates above this share of the limit trigger an exact measurement
EXACT_MEASURE_THRESHOLD = 0.8


def estimate_size(feed: ParsedFeed, raw_length: Optional[int] = None) -> int:
    """Cheap upper-bound guess of the serialized size in bytes."""
    if raw_length is not None:
        return int(raw_length * RAW_OVERHEAD_FACTOR)

    meta = feed.metadata
    total = len(meta.title) + len(meta.description or "") + len(meta.link)
    for item in feed.items:
        total += len(item.title) + len(item.link)
        total += len(item.description or "") + len(item.content or "")
    return int(total * FIELD_OVERHEAD_FACTOR)


def measure_size(feed: ParsedFeed) -> int:
    """Exact size in bytes of the compact UTF-8 JSON serialization."""
    payload = json.dumps(feed.to_dict(include_raw=False), separators=(",", ":"), ensure_ascii=False)
    return len(payload.encode("utf-8"))


class SizeGuard:
    """Enforces the item-count and serialized-size limits."""

    def __init__(self, max_bytes: Optional[int] = None, max_items: Optional[int] = None) -> None:
        self.max_bytes = max_bytes or config.MAX_FEED_SIZE_BYTES
        self.max_items = max_items or config.MAX_FEED_ITEMS

    def check_item_count(self, count: int) -> Optional[FeedParseResult]:
        """Return a failure when `count` exceeds the item cap, else None."""
        if count <= self.max_items:
            return None
        logger.warning(f"Rejecting feed with {count} items (limit {self.max_items})")
        return FeedParseResult.failure(
            f"Feed contains too many items ({count}); the maximum supported is {self.max_items}. "
            "Split the feed into pages or trim older entries.",
            ErrorCategory.ITEM_COUNT_EXCEEDED,
        )

    def oversized_response(self, size: int, limit: int) -> FeedParseResult:
        """Failure for a body the transport refused to download in full."""
        logger.warning(f"Rejecting feed response of {size} bytes (download limit {limit})")
        return FeedParseResult.failure(
            f"Feed response is too large: it exceeds the {limit / MEBIBYTE:.0f} MB download limit "
            f"({size / MEBIBYTE:.2f} MB declared or received). Publish fewer items or less embedded content.",
            ErrorCategory.SIZE_EXCEEDED,
        )

    def check(self, feed: ParsedFeed, raw_length: Optional[int] = None) -> Optional[FeedParseResult]:
        """Return a failure when the feed is over either limit, else None."""
        too_many = self.check_item_count(len(feed.items))
        if too_many is not None:
            return too_many

        size = estimate_size(feed, raw_length)
        if size > self.max_bytes * EXACT_MEASURE_THRESHOLD:
            size = measure_size(feed)
            logger.debug(f"Measured feed size exactly: {size} bytes")

        if size <= self.max_bytes:
            return None

        logger.warning(f"Rejecting feed of {size} bytes (limit {self.max_bytes})")
        return FeedParseResult.failure(
            f"Feed is too large: {size / MEBIBYTE:.2f} MB exceeds the {self.max_bytes / MEBIBYTE:.0f} MB limit. "
            "Reduce embedded content (for example full-text HTML or inline images) or publish fewer items.",
            ErrorCategory.SIZE_EXCEEDED,
        )
