import pytest

import fetcher as fetcher_module
from conftest import ATOM_SAMPLE, JSON_FEED_SAMPLE, RSS_SAMPLE, FakeTransport, make_response, rss_with_items
from config import MEBIBYTE
from errors import ErrorCategory, FetchError, FetchTimeoutError, ResponseTooLargeError
from fetcher import JSON_ACCEPT, FeedFetcher
from models import FeedType
from size_guard import SizeGuard

URL = "https://feeds.example.com/feed"


def _fetcher(transport, **guard_kwargs):
    guard = SizeGuard(max_bytes=guard_kwargs.get("max_bytes", 10 * 1024 * 1024),
                      max_items=guard_kwargs.get("max_items", 1000))
    return FeedFetcher(transport=transport, size_guard=guard, timeout=5)


@pytest.mark.asyncio
async def test_rss_feed_parsed_end_to_end():
    transport = FakeTransport(xml=make_response(RSS_SAMPLE))
    fetcher = _fetcher(transport)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.success is True
    assert result.error is None
    assert result.feed.type is FeedType.RSS
    assert len(result.feed.items) == 3
    assert result.feed.items[2].pub_date is None
    assert transport.calls == [(URL, "xml")]


@pytest.mark.asyncio
async def test_atom_feed_detected():
    transport = FakeTransport(xml=make_response(ATOM_SAMPLE, content_type="application/atom+xml"))
    fetcher = _fetcher(transport)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.success is True
    assert result.feed.type is FeedType.ATOM
    assert result.feed.items[0].title == "Atom entry"


@pytest.mark.asyncio
async def test_json_feed_fallback():
    json_body = make_response(JSON_FEED_SAMPLE, content_type="application/json")
    transport = FakeTransport(xml=json_body, json=json_body)
    fetcher = _fetcher(transport)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.success is True
    assert result.feed.type is FeedType.JSON
    assert len(result.feed.items) == 2
    assert result.feed.metadata.title == "JSON Example"
    assert transport.calls == [(URL, "xml"), (URL, "json")]


@pytest.mark.asyncio
async def test_json_fallback_sends_json_accept_header():
    seen = []

    class RecordingTransport(FakeTransport):
        async def fetch_with_timeout(self, url, method="GET", headers=None, timeout=None):
            seen.append(dict(headers or {}))
            return await super().fetch_with_timeout(url, method, headers, timeout)

    transport = RecordingTransport(xml=make_response("<html><body>Hi</body></html>", content_type="text/html"))
    fetcher = _fetcher(transport)
    try:
        await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert seen[1]["Accept"] == JSON_ACCEPT


@pytest.mark.asyncio
async def test_not_found_reports_http_error():
    not_found = make_response(b"", status=404, status_text="Not Found", content_type="text/html")
    transport = FakeTransport(xml=not_found, json=not_found)
    fetcher = _fetcher(transport)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.success is False
    assert result.feed is None
    assert result.error_category is ErrorCategory.HTTP
    assert "404" in result.error
    assert "Verify the feed URL" in result.error


@pytest.mark.asyncio
async def test_html_page_reports_parse_error():
    page = make_response("<html><head><title>Home</title></head><body><p>Hi</p></body></html>",
                         content_type="text/html")
    transport = FakeTransport(xml=page, json=page)
    fetcher = _fetcher(transport)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.success is False
    assert result.error_category is ErrorCategory.PARSE


@pytest.mark.asyncio
async def test_json_without_version_marker_is_parse_error():
    body = make_response({"title": "not a feed", "items": []}, content_type="application/json")
    transport = FakeTransport(xml=body, json=body)
    fetcher = _fetcher(transport)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.success is False
    assert result.error_category is ErrorCategory.PARSE


@pytest.mark.asyncio
async def test_connection_refused_reports_network_error():
    refused = FetchError("HTTP request failed: ClientConnectorError errno=111 Connect call failed ECONNREFUSED", URL)
    transport = FakeTransport(xml=refused, json=refused)
    fetcher = _fetcher(transport)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.success is False
    assert result.error_category is ErrorCategory.NETWORK


@pytest.mark.asyncio
async def test_timeout_reports_network_error():
    timeout = FetchTimeoutError(URL, 5)
    transport = FakeTransport(xml=timeout, json=timeout)
    fetcher = _fetcher(transport)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.error_category is ErrorCategory.NETWORK
    assert "timeout" in result.error.lower()


@pytest.mark.asyncio
async def test_status_from_json_attempt_used_when_xml_was_unparseable():
    page = make_response("<html><body>Hi</body></html>", content_type="text/html")
    gone = make_response(b"", status=410, status_text="Gone", content_type="text/html")
    transport = FakeTransport(xml=page, json=gone)
    fetcher = _fetcher(transport)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.error_category is ErrorCategory.HTTP
    assert "410" in result.error


@pytest.mark.asyncio
async def test_item_cap_checked_before_normalization(monkeypatch):
    def fail_if_called(*args, **kwargs):
        raise AssertionError("normalization should not run for oversized feeds")

    monkeypatch.setattr(fetcher_module, "normalize_xml_feed", fail_if_called)
    transport = FakeTransport(xml=make_response(rss_with_items(1001)))
    fetcher = _fetcher(transport)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.success is False
    assert result.error_category is ErrorCategory.ITEM_COUNT_EXCEEDED


@pytest.mark.asyncio
async def test_item_cap_allows_exactly_the_limit():
    transport = FakeTransport(xml=make_response(rss_with_items(1000)))
    fetcher = _fetcher(transport)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.success is True
    assert len(result.feed.items) == 1000


@pytest.mark.asyncio
async def test_json_feed_item_cap():
    document = dict(JSON_FEED_SAMPLE, items=[{"id": str(i)} for i in range(6)])
    body = make_response(document, content_type="application/json")
    transport = FakeTransport(xml=body, json=body)
    fetcher = _fetcher(transport, max_items=5)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.error_category is ErrorCategory.ITEM_COUNT_EXCEEDED


@pytest.mark.asyncio
async def test_oversized_feed_rejected():
    transport = FakeTransport(xml=make_response(rss_with_items(2, content="x" * 5000)))
    fetcher = _fetcher(transport, max_bytes=2000)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.success is False
    assert result.error_category is ErrorCategory.SIZE_EXCEEDED


@pytest.mark.asyncio
async def test_oversized_download_reports_size_without_json_retry():
    transport = FakeTransport(xml=ResponseTooLargeError(URL, 60 * MEBIBYTE, 50 * MEBIBYTE))
    fetcher = _fetcher(transport)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.success is False
    assert result.error_category is ErrorCategory.SIZE_EXCEEDED
    assert "50 MB" in result.error
    assert transport.calls == [(URL, "xml")]


@pytest.mark.asyncio
async def test_oversized_json_download_reports_size():
    transport = FakeTransport(
        xml=make_response("<html><body>not a feed</body></html>", content_type="text/html"),
        json=ResponseTooLargeError(URL, 60 * MEBIBYTE, 50 * MEBIBYTE),
    )
    fetcher = _fetcher(transport)
    try:
        result = await fetcher.parse(URL)
    finally:
        await fetcher.close()

    assert result.success is False
    assert result.error_category is ErrorCategory.SIZE_EXCEEDED
    assert transport.calls == [(URL, "xml"), (URL, "json")]


@pytest.mark.asyncio
async def test_close_closes_transport():
    transport = FakeTransport(xml=make_response(RSS_SAMPLE))
    fetcher = _fetcher(transport)
    await fetcher.close()
    assert transport.closed is True
