#!/usr/bin/env python3
"""
Feed toolkit entry point.

`FeedService` is the composition root: it owns the cache, the in-flight
request tracker and the fetcher, and exposes the single `parse_feed` entry
point used by analysis features. Concurrent calls for the same URL share one
fetch; results (including failures) are cached for the configured TTL.

Command line:
    python main.py parse URL [URL ...] [--no-cache] [--pretty] [--include-raw]
    python main.py config
"""

import argparse
import asyncio
import json
import sys
from functools import partial
from typing import List, Optional

from cache import FeedCache
from config import config, get_logger
from errors import ErrorCategory
from fetcher import FeedFetcher
from inflight import InFlightTracker
from models import FeedParseResult
from telemetry import init_telemetry, trace_span
from utils import check_feed_url

logger = get_logger("service")
init_telemetry("feed-toolkit")


class FeedService:
    """Cached, single-flight access to parsed feeds."""

    def __init__(
        self,
        fetcher: Optional[FeedFetcher] = None,
        cache: Optional[FeedCache] = None,
        in_flight: Optional[InFlightTracker] = None,
        allow_private_urls: Optional[bool] = None,
    ) -> None:
        self.fetcher = fetcher or FeedFetcher()
        self.cache = cache or FeedCache()
        self.in_flight = in_flight or InFlightTracker()
        self.allow_private_urls = config.ALLOW_PRIVATE_URLS if allow_private_urls is None else allow_private_urls
        self._destroyed = False

    @trace_span(
        "service.parse_feed",
        tracer_name="service",
        attr_from_args=lambda self, url, use_cache=True: {"feed.url": url, "cache.enabled": use_cache},
    )
    async def parse_feed(self, url: str, use_cache: bool = True) -> FeedParseResult:
        """Return the parsed feed for `url`.

        With `use_cache=False` the cache read is skipped, but the call still
        joins a fetch already in flight and the result is still cached.
        """
        if self._destroyed:
            raise RuntimeError("FeedService has been destroyed")

        url = url.strip() if isinstance(url, str) else url
        invalid = check_feed_url(url, allow_private=self.allow_private_urls)
        if invalid:
            logger.info(f"Rejected feed URL {url!r}: {invalid}")
            return FeedParseResult.failure(invalid, ErrorCategory.INVALID_URL)

        if not self.cache.sweeper_running:
            self.cache.start_sweeper()

        if use_cache:
            cached = self.cache.get(url)
            if cached is not None:
                logger.debug(f"Cache hit for {url}")
                return cached

        # No await between the cache miss and registration in the tracker
        return await self.in_flight.run(url, partial(self._fetch_and_store, url))

    async def _fetch_and_store(self, url: str) -> FeedParseResult:
        result = await self.fetcher.parse(url)
        self.cache.set(url, result)
        return result

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Feed cache cleared")

    def cache_size(self) -> int:
        return self.cache.size()

    def in_flight_count(self) -> int:
        return self.in_flight.count()

    async def destroy(self) -> None:
        """Stop background work and release every resource."""
        if self._destroyed:
            return
        self._destroyed = True
        self.in_flight.cancel_all()
        await self.cache.close()
        await self.fetcher.close()
        logger.info("FeedService destroyed")

    async def __aenter__(self) -> "FeedService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.destroy()


async def parse_urls(urls: List[str], use_cache: bool = True) -> List[FeedParseResult]:
    """Parse several URLs concurrently through one service."""
    async with FeedService() as service:
        return await asyncio.gather(*(service.parse_feed(url, use_cache=use_cache) for url in urls))


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Feed toolkit: fetch, parse and normalize RSS/Atom/JSON feeds')
    subparsers = parser.add_subparsers(dest='mode', required=True)

    parse_cmd = subparsers.add_parser('parse', help='Parse one or more feed URLs and print JSON results')
    parse_cmd.add_argument('urls', nargs='+', help='Feed URLs')
    parse_cmd.add_argument('--no-cache', action='store_true',
                           help='Bypass cache reads (duplicate URLs still share one fetch)')
    parse_cmd.add_argument('--pretty', action='store_true', help='Indent JSON output')
    parse_cmd.add_argument('--include-raw', action='store_true', help='Include the original document text')

    subparsers.add_parser('config', help='Print the effective configuration')

    args = parser.parse_args()

    try:
        if args.mode == 'config':
            print(json.dumps(config.get_config_summary(), indent=2))
            return

        results = asyncio.run(parse_urls(args.urls, use_cache=not args.no_cache))
        payload = {
            url: result.to_dict(include_raw=args.include_raw)
            for url, result in zip(args.urls, results)
        }
        print(json.dumps(payload, indent=2 if args.pretty else None, ensure_ascii=False))
        sys.exit(0 if all(result.success for result in results) else 1)

    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
