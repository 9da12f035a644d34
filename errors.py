#!/usr/bin/env python3
"""Common error types shared across modules.

Transport and parse failures are raised as these exceptions inside the
pipeline and converted into typed `FeedParseResult` failures by the fetcher.
"""

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """Failure categories reported to feed consumers."""
    HTTP = "http"
    NETWORK = "network"
    CORS = "cors"
    PARSE = "parse"
    UNKNOWN = "unknown"
    # Policy violations, reported without going through the classifier
    ITEM_COUNT_EXCEEDED = "item-count-exceeded"
    SIZE_EXCEEDED = "size-exceeded"
    INVALID_URL = "invalid-url"


class FeedToolkitError(Exception):
    """Base class for predictable pipeline failures."""


class FetchError(FeedToolkitError):
    """Raised when a request cannot be completed by the transport.

    Attributes:
        url: The requested URL, when known.
    """

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class FetchTimeoutError(FetchError):
    """Raised when a request exceeds its timeout."""

    def __init__(self, url: str, timeout: float):
        super().__init__(f"Request timeout: Request to {url} exceeded {int(timeout * 1000)}ms", url)
        self.timeout = timeout


class HTTPStatusError(FetchError):
    """Raised when the server answers with a non-2xx status."""

    def __init__(self, status: int, status_text: str = "", url: Optional[str] = None):
        label = f"HTTP {status} {status_text}".strip()
        super().__init__(f"{label} fetching {url}" if url else label, url)
        self.status = status
        self.status_text = status_text


class ResponseTooLargeError(FetchError):
    """Raised when a response body is larger than the download limit.

    `size` is the declared Content-Length, or the bytes received so far when
    the body was streamed without one.
    """

    def __init__(self, url: str, size: int, limit: int):
        super().__init__(f"Response from {url} is larger than {limit} bytes ({size} bytes)", url)
        self.size = size
        self.limit = limit


class FeedFormatError(FeedToolkitError):
    """Raised when a document is not a recognizable feed."""


__all__ = [
    "ErrorCategory",
    "FeedToolkitError",
    "FetchError",
    "FetchTimeoutError",
    "HTTPStatusError",
    "ResponseTooLargeError",
    "FeedFormatError",
]
