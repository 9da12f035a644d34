#!/usr/bin/env python3
"""
Feed fetch-and-parse orchestrator.

Fetches a feed URL, parses it as RSS/Atom with feedparser, and falls back to
JSON Feed when the document is not XML. Results are normalized, checked
against the size guard and returned as a `FeedParseResult`; predictable
failures (network, HTTP, parse, policy) are returned as typed failures rather
than raised.
"""

import json
from asyncio import get_running_loop
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from io import BytesIO
from typing import Any, Optional, Tuple

import feedparser

from classifier import classify
from config import config, get_logger
from errors import FeedFormatError, FetchError, HTTPStatusError, ResponseTooLargeError
from models import FeedParseResult, ParsedFeed
from normalizer import detect_feed_type, is_json_feed, normalize_json_feed, normalize_xml_feed
from size_guard import SizeGuard
from telemetry import trace_span
from transport import HttpResponse, HttpTransport

logger = get_logger("fetcher")

XML_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"
JSON_ACCEPT = "application/json"

# feedparser is synchronous; parsing runs off the event loop
PARSER_WORKERS = 4


class FeedFetcher:
    """Fetches, parses and normalizes a single feed URL."""

    def __init__(
        self,
        transport: Optional[HttpTransport] = None,
        size_guard: Optional[SizeGuard] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.transport = transport or HttpTransport()
        self.size_guard = size_guard or SizeGuard()
        self.timeout = timeout or config.HTTP_TIMEOUT
        self.executor = ThreadPoolExecutor(max_workers=PARSER_WORKERS, thread_name_prefix="feedparser")

    async def run_in_executor(self, func, *args) -> Any:
        """Run a blocking function in the parser thread pool."""
        return await get_running_loop().run_in_executor(self.executor, partial(func, *args))

    @trace_span(
        "parse_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, url: {"feed.url": url},
    )
    async def parse(self, url: str) -> FeedParseResult:
        """Fetch and parse `url`, trying RSS/Atom first and JSON Feed second."""
        logger.info(f"Parsing feed: {url}")
        try:
            parsed, response = await self._fetch_xml(url)
        except ResponseTooLargeError as e:
            return self.size_guard.oversized_response(e.size, e.limit)
        except (FetchError, FeedFormatError) as xml_error:
            logger.info(f"RSS/Atom parsing failed for {url} ({xml_error}); trying JSON Feed")
            return await self._parse_json_feed(url, xml_error)
        return self._build_xml_result(url, parsed, response)

    # ------------------------------------------------------------------
    # RSS / Atom
    # ------------------------------------------------------------------
    @trace_span(
        "fetch_xml_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, url: {"http.url": url},
    )
    async def _fetch_xml(self, url: str) -> Tuple[Any, HttpResponse]:
        response = await self.transport.fetch_with_timeout(url, headers={'Accept': XML_ACCEPT}, timeout=self.timeout)
        if not response.ok:
            raise HTTPStatusError(response.status, response.status_text, url)

        parsed = await self.run_in_executor(self._parse_xml, response.body or b"", response.headers)

        version = parsed.get('version') or ""
        if not version:
            if parsed.get('bozo') and parsed.get('bozo_exception') is not None:
                raise FeedFormatError(f"XML parse error: {parsed.get('bozo_exception')}")
            raise FeedFormatError("Document is not a recognized RSS or Atom feed")
        if version.startswith('json'):
            # feedparser reads JSON Feed when served as application/json
            raise FeedFormatError("Document is a JSON feed, not RSS or Atom")

        if parsed.get('bozo') and parsed.get('bozo_exception') is not None:
            # feedparser recovers from many problems; keep going but record them
            logger.warning(f"Feed parsing warning for {url}: {parsed.get('bozo_exception')}")
        logger.debug(f"Feed {url} parsed as {parsed.get('version')}")
        return parsed, response

    @staticmethod
    def _parse_xml(body: bytes, headers: dict) -> Any:
        return feedparser.parse(
            BytesIO(body),
            response_headers=headers,
            sanitize_html=True,
            resolve_relative_uris=True,
        )

    def _build_xml_result(self, url: str, parsed: Any, response: HttpResponse) -> FeedParseResult:
        # Cheap count check before any per-item work
        too_many = self.size_guard.check_item_count(len(parsed.get('entries') or []))
        if too_many is not None:
            return too_many

        feed = normalize_xml_feed(parsed, detect_feed_type(parsed), self._decode(response, parsed.get('encoding')))
        return self._finalize(url, feed, len(response.body or b""))

    @staticmethod
    def _decode(response: HttpResponse, encoding: Optional[str]) -> str:
        try:
            return response.text(encoding or "utf-8")
        except LookupError:
            return response.text()

    # ------------------------------------------------------------------
    # JSON Feed fallback
    # ------------------------------------------------------------------
    @trace_span(
        "parse_json_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, url, xml_error: {"http.url": url},
    )
    async def _parse_json_feed(self, url: str, xml_error: Exception) -> FeedParseResult:
        status, status_text = self._status_of(xml_error)

        try:
            response = await self.transport.fetch_with_timeout(url, headers={'Accept': JSON_ACCEPT}, timeout=self.timeout)
        except ResponseTooLargeError as e:
            return self.size_guard.oversized_response(e.size, e.limit)
        except FetchError as json_error:
            logger.debug(f"JSON Feed fetch failed for {url}: {json_error}")
            return self._failure(url, xml_error, status, status_text)

        if not response.ok:
            # The XML error is usually more descriptive; keep the status though
            if status is None:
                status, status_text = response.status, response.status_text
            return self._failure(url, xml_error, status, status_text)

        try:
            document = json.loads(response.body or b"")
        except ValueError as json_error:
            logger.debug(f"Response from {url} is not JSON: {json_error}")
            return self._failure(url, xml_error, status, status_text)

        if not is_json_feed(document):
            logger.debug(f"JSON document at {url} has no JSON Feed version marker")
            return self._failure(url, xml_error, status, status_text)

        items = document.get('items')
        too_many = self.size_guard.check_item_count(len(items) if isinstance(items, list) else 0)
        if too_many is not None:
            return too_many

        feed = normalize_json_feed(document, raw=response.text())
        return self._finalize(url, feed, len(response.body or b""))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _finalize(self, url: str, feed: ParsedFeed, raw_length: int) -> FeedParseResult:
        too_large = self.size_guard.check(feed, raw_length)
        if too_large is not None:
            return too_large
        logger.info(f"Parsed {feed.type.value} feed {url} with {len(feed.items)} items")
        return FeedParseResult.ok(feed)

    @staticmethod
    def _status_of(error: Exception) -> Tuple[Optional[int], Optional[str]]:
        if isinstance(error, HTTPStatusError):
            return error.status, error.status_text
        return None, None

    def _failure(
        self,
        url: str,
        error: Exception,
        status: Optional[int],
        status_text: Optional[str],
    ) -> FeedParseResult:
        classified = classify(error, status, status_text)
        logger.warning(f"Failed to parse {url} [{classified.category.value}]: {classified.message}")
        return FeedParseResult.failure(classified.message, classified.category)

    async def close(self) -> None:
        """Close the transport and stop the parser threads."""
        await self.transport.close()
        self.executor.shutdown(wait=False)
        logger.debug("FeedFetcher closed")
