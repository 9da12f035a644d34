import asyncio
import socket

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from errors import FetchError, FetchTimeoutError, ResponseTooLargeError
from transport import HttpTransport


def _app():
    async def feed(request):
        return web.Response(
            text="<rss version=\"2.0\"><channel><title>t</title></channel></rss>",
            content_type="application/rss+xml",
            headers={"X-Accept-Seen": request.headers.get("Accept", "")},
        )

    async def missing(request):
        raise web.HTTPNotFound()

    async def slow(request):
        await asyncio.sleep(1)
        return web.Response(text="late")

    async def huge(request):
        return web.Response(body=b"x" * 4096, content_type="application/rss+xml")

    async def streamed(request):
        response = web.StreamResponse(headers={"Content-Type": "application/rss+xml"})
        response.enable_chunked_encoding()
        await response.prepare(request)
        for _ in range(4):
            await response.write(b"x" * 1024)
        await response.write_eof()
        return response

    app = web.Application()
    app.router.add_get("/feed", feed)
    app.router.add_get("/missing", missing)
    app.router.add_get("/slow", slow)
    app.router.add_get("/huge", huge)
    app.router.add_get("/streamed", streamed)
    return app


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_successful_response_is_captured():
    transport = HttpTransport(timeout=5)
    async with TestServer(_app()) as server:
        try:
            response = await transport.fetch_with_timeout(
                str(server.make_url("/feed")), headers={"Accept": "application/rss+xml"}
            )
        finally:
            await transport.close()

    assert response.ok is True
    assert response.status == 200
    assert response.headers["content-type"].startswith("application/rss+xml")
    assert response.headers["x-accept-seen"] == "application/rss+xml"
    assert b"<rss" in response.body


@pytest.mark.asyncio
async def test_error_status_is_returned_not_raised():
    transport = HttpTransport(timeout=5)
    async with TestServer(_app()) as server:
        try:
            response = await transport.fetch_with_timeout(str(server.make_url("/missing")))
        finally:
            await transport.close()

    assert response.ok is False
    assert response.status == 404
    assert response.status_text == "Not Found"


@pytest.mark.asyncio
async def test_slow_response_raises_timeout():
    transport = HttpTransport(timeout=5)
    async with TestServer(_app()) as server:
        url = str(server.make_url("/slow"))
        try:
            with pytest.raises(FetchTimeoutError) as excinfo:
                await transport.fetch_with_timeout(url, timeout=0.1)
        finally:
            await transport.close()

    assert excinfo.value.url == url
    assert "100ms" in str(excinfo.value)


@pytest.mark.asyncio
async def test_connection_refused_raises_fetch_error():
    transport = HttpTransport(timeout=5)
    try:
        with pytest.raises(FetchError) as excinfo:
            await transport.fetch_with_timeout(f"http://127.0.0.1:{_unused_port()}/feed")
    finally:
        await transport.close()

    assert not isinstance(excinfo.value, FetchTimeoutError)
    assert str(excinfo.value).startswith("HTTP request failed:")


@pytest.mark.asyncio
async def test_declared_length_over_limit_is_refused():
    transport = HttpTransport(timeout=5, max_body_bytes=1024)
    async with TestServer(_app()) as server:
        url = str(server.make_url("/huge"))
        try:
            with pytest.raises(ResponseTooLargeError) as excinfo:
                await transport.fetch_with_timeout(url)
        finally:
            await transport.close()

    assert excinfo.value.url == url
    assert excinfo.value.size == 4096
    assert excinfo.value.limit == 1024


@pytest.mark.asyncio
async def test_chunked_body_over_limit_is_cut_off():
    transport = HttpTransport(timeout=5, max_body_bytes=1024)
    async with TestServer(_app()) as server:
        try:
            with pytest.raises(ResponseTooLargeError) as excinfo:
                await transport.fetch_with_timeout(str(server.make_url("/streamed")))
        finally:
            await transport.close()

    assert excinfo.value.size > 1024


@pytest.mark.asyncio
async def test_body_within_limit_is_read_in_full():
    transport = HttpTransport(timeout=5, max_body_bytes=4096)
    async with TestServer(_app()) as server:
        try:
            response = await transport.fetch_with_timeout(str(server.make_url("/huge")))
        finally:
            await transport.close()

    assert response.body == b"x" * 4096
