#!/usr/bin/env python3
"""
Utility functions for the feed toolkit.

URL validation applied before any request is made: only http(s) URLs are
accepted, and loopback, private, link-local and internal hosts are rejected
so user-supplied URLs cannot be used to probe the local network.
"""

from ipaddress import ip_address
from typing import Optional
from urllib.parse import urlparse

from config import get_logger

logger = get_logger("utils")

ALLOWED_SCHEMES = ('http', 'https')
BLOCKED_HOSTNAMES = ('localhost', 'localhost.localdomain', 'ip6-localhost', 'ip6-loopback')
BLOCKED_HOST_SUFFIXES = ('.localhost', '.local', '.internal', '.localdomain')


def _is_private_address(hostname: str) -> bool:
    try:
        address = ip_address(hostname)
    except ValueError:
        return False
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
        or address.is_multicast
    )


def check_feed_url(url: str, allow_private: bool = False) -> Optional[str]:
    """Return an error message if `url` must not be fetched, else None.

    Args:
        url: User-supplied feed URL
        allow_private: Skip the loopback/private network checks

    Note that host names are not resolved; a public name pointing at a
    private address is not detected here.
    """
    if not url or not isinstance(url, str) or not url.strip():
        return "A feed URL is required."

    try:
        parsed = urlparse(url.strip())
        hostname = (parsed.hostname or "").lower()
    except ValueError as e:
        return f"Invalid URL format: {e}"

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        scheme = parsed.scheme or "(none)"
        return f"Protocol \"{scheme}\" is not allowed. Only HTTP and HTTPS feed URLs are supported."

    if not hostname:
        return "Invalid URL format: the URL has no host name."

    if allow_private:
        return None

    if hostname in BLOCKED_HOSTNAMES or hostname.endswith(BLOCKED_HOST_SUFFIXES):
        logger.info(f"Rejected internal host name {hostname}")
        return "Localhost and internal host names are not allowed for security reasons."

    if _is_private_address(hostname):
        logger.info(f"Rejected private address {hostname}")
        return "Private, loopback and link-local IP addresses are not allowed for security reasons."

    return None
