#!/usr/bin/env python3
"""
HTTP transport for feed retrieval.

Wraps an aiohttp ClientSession behind a single `fetch_with_timeout` primitive
that enforces a hard timeout and converts aiohttp failures into the toolkit's
exception types.
"""

from asyncio import wait_for, TimeoutError
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from aiohttp import ClientError, ClientResponse, ClientSession, ClientTimeout

from config import config, get_logger
from errors import FetchError, FetchTimeoutError, ResponseTooLargeError
from telemetry import trace_span

logger = get_logger("transport")

READ_CHUNK_SIZE = 64 * 1024


@dataclass
class HttpResponse:
    status: int
    status_text: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    ok: bool = False

    def text(self, encoding: str = "utf-8") -> str:
        """Decode the body, replacing undecodable bytes."""
        if not self.body:
            return ""
        return self.body.decode(encoding, errors="replace")


class HttpTransport:
    """Owns an aiohttp session and performs bounded-time requests."""

    def __init__(
        self,
        session: Optional[ClientSession] = None,
        timeout: Optional[float] = None,
        max_body_bytes: Optional[int] = None,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self.timeout = timeout or config.HTTP_TIMEOUT
        self.max_body_bytes = max_body_bytes or config.MAX_RESPONSE_SIZE_BYTES

    async def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(headers={'User-Agent': config.USER_AGENT})
            self._owns_session = True
        return self._session

    @trace_span(
        "fetch_with_timeout",
        tracer_name="transport",
        attr_from_args=lambda self, url, method="GET", headers=None, timeout=None: {
            "http.url": url,
            "http.method": method,
        },
    )
    async def fetch_with_timeout(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        """Perform a request, raising FetchTimeoutError past the timeout.

        Non-2xx responses are returned, not raised; callers decide how to
        treat them. Bodies over `max_body_bytes` raise ResponseTooLargeError.
        """
        timeout_seconds = timeout or self.timeout
        request_headers = {'User-Agent': config.USER_AGENT}
        if headers:
            request_headers.update(headers)

        session = await self._get_session()
        try:
            # ClientTimeout bounds the socket work, wait_for bounds the whole exchange
            return await wait_for(
                self._request(session, url, method, request_headers, timeout_seconds),
                timeout=timeout_seconds,
            )
        except TimeoutError as e:
            logger.warning("Timeout fetching %s (timeout=%ss)", url, timeout_seconds)
            raise FetchTimeoutError(url, timeout_seconds) from e
        except ClientError as e:
            detail = self._format_client_error(e)
            logger.warning("Error fetching %s: %s", url, detail)
            raise FetchError(f"HTTP request failed: {detail}", url) from e

    async def _request(
        self,
        session: ClientSession,
        url: str,
        method: str,
        headers: Dict[str, str],
        timeout_seconds: float,
    ) -> HttpResponse:
        async with session.request(
            method,
            url,
            headers=headers,
            timeout=ClientTimeout(total=timeout_seconds),
            max_redirects=config.MAX_REDIRECTS,
        ) as response:
            body = None if method.upper() == "HEAD" else await self._read_body(response, url)
            logger.debug("%s %s -> %s (%s bytes)", method, url, response.status, len(body) if body else 0)
            return HttpResponse(
                status=response.status,
                status_text=response.reason or "",
                headers={k.lower(): v for k, v in response.headers.items()},
                body=body,
                ok=200 <= response.status < 300,
            )

    async def _read_body(self, response: ClientResponse, url: str) -> bytes:
        """Read the body in chunks, stopping once it passes the size limit."""
        limit = self.max_body_bytes
        declared = response.content_length
        if declared is not None and declared > limit:
            logger.warning("Refusing %s: Content-Length %s exceeds %s bytes", url, declared, limit)
            raise ResponseTooLargeError(url, declared, limit)

        chunks: List[bytes] = []
        received = 0
        async for chunk in response.content.iter_chunked(READ_CHUNK_SIZE):
            received += len(chunk)
            if received > limit:
                logger.warning("Aborting %s after %s bytes (limit %s)", url, received, limit)
                raise ResponseTooLargeError(url, received, limit)
            chunks.append(chunk)
        return b"".join(chunks)

    def _format_client_error(self, error: ClientError) -> str:
        """Describe aiohttp client errors with any available status/errno."""
        parts: List[str] = [error.__class__.__name__]
        status = getattr(error, 'status', None)
        if status is not None:
            parts.append(f"status={status}")
        os_error = getattr(error, 'os_error', None)
        if os_error is not None:
            errno = getattr(os_error, 'errno', None)
            strerror = getattr(os_error, 'strerror', None)
            if errno is not None:
                parts.append(f"errno={errno}")
            if strerror:
                parts.append(str(strerror))
        message = str(error)
        if message:
            parts.append(message)
        return " ".join(parts)

    async def close(self) -> None:
        """Close the underlying session if this transport created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
            logger.debug("HTTP session closed")
        self._session = None
