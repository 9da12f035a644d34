#!/usr/bin/env python3
"""
Error classifier.

Maps a raw exception (or message) plus an optional HTTP status into one of a
fixed set of categories with a message a feed developer can act on.

Matching order: explicit HTTP status, a status embedded in the text
("HTTP 404"), then network, CORS and parse substrings over the lower-cased
error text, and finally a generic fallback.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from errors import ErrorCategory, HTTPStatusError

HTTP_STATUS_PATTERN = re.compile(r"\bhttp\s+(\d{3})\b", re.IGNORECASE)

NETWORK_MARKERS = (
    "econnrefused", "econnreset", "enotfound", "etimedout", "eai_again",
    "getaddrinfo", "name or service not known", "nodename nor servname",
    "dns", "timeout", "timed out", "connection", "cannot connect",
    "unable to connect", "network", "ssl", "tls", "certificate",
)
CORS_MARKERS = ("cors", "cross-origin", "access-control")
PARSE_MARKERS = (
    "unexpected token", "expecting value", "not well-formed", "syntax",
    "malformed", "invalid feed", "not a recognized", "xml", "json", "parse",
)

HTTP_GUIDANCE = {
    401: ("This feed requires authentication.",
          ["Check whether the feed URL needs an access token or credentials",
           "Publish an unauthenticated copy of the feed for syndication"]),
    403: ("The server refused access to this feed.",
          ["Check whether the server blocks automated clients or specific user agents",
           "Verify that your IP address or region is not blocked",
           "Contact the feed publisher for access"]),
    404: ("Verify the feed URL; the server could not find it.",
          ["Copy the exact URL from the feed source, including the protocol",
           "Check whether the feed has moved or been deleted",
           "Open the URL in a browser to confirm it exists"]),
    410: ("The feed has been permanently removed.",
          ["Look for a replacement feed on the publisher's site",
           "Remove this URL from subscriptions"]),
    429: ("The server is rate limiting requests to this feed.",
          ["Wait a few minutes before trying again",
           "Honor the Retry-After header and reduce polling frequency"]),
}
SERVER_ERROR_GUIDANCE = (
    "The feed server is experiencing problems; this is not caused by your request.",
    ["Wait a few minutes and try again",
     "Check the publisher's status page for outages"],
)
GENERIC_HTTP_GUIDANCE = (
    "The server returned an unexpected status.",
    ["Open the URL in a browser to inspect the response",
     "Confirm the URL serves a feed and not an HTML page"],
)
CATEGORY_GUIDANCE = {
    ErrorCategory.NETWORK: (
        "Could not reach the feed server (DNS, connection, timeout or TLS failure). "
        "Verify the host name and that the server is online.",
        ["Open the feed URL in a browser",
         "Check DNS resolution and firewall or proxy settings",
         "Check that the server's TLS certificate is valid",
         "Wait a moment and try again"],
    ),
    ErrorCategory.CORS: (
        "The feed server does not allow cross-origin requests.",
        ["Enable Access-Control-Allow-Origin on the feed server",
         "Fetch the feed server-side instead of from the browser"],
    ),
    ErrorCategory.PARSE: (
        "The document could not be parsed as RSS, Atom or JSON Feed. "
        "Check that it is well-formed and served with the right content type.",
        ["Validate the feed structure with a linter",
         "Make sure all XML elements are closed and special characters escaped",
         "Check that the declared encoding matches the content (UTF-8 recommended)"],
    ),
    ErrorCategory.UNKNOWN: (
        "The feed could not be loaded. Check that the URL is correct and publicly accessible.",
        ["Open the URL in a browser first",
         "Check whether the feed requires authentication or special headers",
         "Try another feed URL to see if the problem persists"],
    ),
}


@dataclass
class ClassifiedError:
    message: str
    category: ErrorCategory
    http_status: Optional[int] = None
    suggestions: List[str] = field(default_factory=list)


def _http_guidance(status: int) -> Tuple[str, List[str]]:
    if status in HTTP_GUIDANCE:
        return HTTP_GUIDANCE[status]
    if 500 <= status <= 599:
        return SERVER_ERROR_GUIDANCE
    return GENERIC_HTTP_GUIDANCE


def _classify_http(status: int, status_text: Optional[str]) -> ClassifiedError:
    hint, suggestions = _http_guidance(status)
    label = f"HTTP {status} {status_text}".strip() if status_text else f"HTTP {status}"
    return ClassifiedError(
        message=f"{label}: {hint}",
        category=ErrorCategory.HTTP,
        http_status=status,
        suggestions=list(suggestions),
    )


def _matches(text: str, markers: Tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)


def classify(
    error: Union[BaseException, str, None],
    http_status: Optional[int] = None,
    http_status_text: Optional[str] = None,
) -> ClassifiedError:
    """Classify a failure; an HTTP status takes precedence over text matching."""
    if http_status is None and isinstance(error, HTTPStatusError):
        http_status = error.status
        http_status_text = http_status_text or error.status_text
    if http_status is not None:
        return _classify_http(http_status, http_status_text)

    detail = str(error) if error is not None else ""
    text = detail.lower()

    embedded = HTTP_STATUS_PATTERN.search(detail)
    if embedded:
        return _classify_http(int(embedded.group(1)), None)

    if _matches(text, NETWORK_MARKERS):
        category = ErrorCategory.NETWORK
    elif _matches(text, CORS_MARKERS):
        category = ErrorCategory.CORS
    elif _matches(text, PARSE_MARKERS):
        category = ErrorCategory.PARSE
    else:
        category = ErrorCategory.UNKNOWN

    hint, suggestions = CATEGORY_GUIDANCE[category]
    message = f"{detail.rstrip('.')}. {hint}" if detail else hint
    return ClassifiedError(message=message, category=category, suggestions=list(suggestions))
