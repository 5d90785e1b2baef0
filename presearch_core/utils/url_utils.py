"""
URL utilities for normalizing, validating, and extracting information from URLs.
Also hosts the SSRF guard applied before fetching arbitrary pages.
"""

import asyncio
import ipaddress
import socket
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from ..core.errors import ValidationError

# Constants
MAX_URL_LENGTH = 2048
ALLOWED_SCHEMES = {"http", "https"}
DNS_TIMEOUT_SECONDS = 5.0


def normalize_url(url: str) -> str:
    """
    Normalize a URL for consistent comparison and storage.
    Adds a scheme when missing and lowercases the host; path/query keep case.

    Args:
        url: URL string to normalize

    Returns:
        Normalized URL string
    """
    if not url:
        return ""

    url = url.strip()
    if "://" not in url:
        url = f"https://{url}"

    p = urlparse(url)
    return urlunparse((
        p.scheme.lower(),
        p.netloc.lower(),
        p.path,
        p.params,
        p.query,
        p.fragment
    ))


def is_valid_url(url: str) -> bool:
    """
    Check if a URL is a well-formed http(s) URL.

    Args:
        url: URL string to validate

    Returns:
        True if URL is valid, False otherwise
    """
    if not url or len(url) > MAX_URL_LENGTH:
        return False

    try:
        p = urlparse(url)
    except ValueError:
        return False
    return p.scheme in ALLOWED_SCHEMES and bool(p.hostname)


def extract_domain(url: str) -> str:
    """
    Extract the lowercase hostname from a URL (no port, no credentials).

    Returns:
        Lowercase host or empty string if extraction fails
    """
    if not url:
        return ""

    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def base_domain(host: str) -> str:
    """Strip a leading ``www.`` from a host."""
    host = (host or "").lower().rstrip(".")
    if host.startswith("www."):
        return host[4:]
    return host


def domain_matches(host: str, domain: str) -> bool:
    """True when ``host`` is ``domain`` or one of its subdomains."""
    host = base_domain(host)
    domain = base_domain(domain)
    return bool(domain) and (host == domain or host.endswith("." + domain))


def _blocked_address(ip: Union[ipaddress.IPv4Address, ipaddress.IPv6Address]) -> Optional[str]:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        reason = _blocked_address(ip.ipv4_mapped)
        return f"mapped {reason}" if reason else None
    if ip.is_loopback:
        return "loopback"
    if ip.is_link_local:
        return "linkLocal"
    if ip.is_unspecified:
        return "unspecified"
    if ip.is_multicast:
        return "multicast"
    if isinstance(ip, ipaddress.IPv4Address):
        if ip in ipaddress.ip_network("100.64.0.0/10"):
            return "carrierGradeNat"
        if ip in ipaddress.ip_network("0.0.0.0/8"):
            return "currentNetwork"
    if ip.is_private:
        return "private"
    if ip.is_reserved:
        return "reserved"
    return None


async def validate_fetch_url(url: str, *, resolve: bool = True) -> str:
    """
    Validate a URL before fetching it on behalf of a caller.

    Rejects non-http(s) schemes, ``localhost``, and any host that is (or
    resolves to) a private, loopback, link-local or otherwise internal
    address.

    Returns:
        The hostname that was checked

    Raises:
        ValidationError: if the URL must not be fetched
    """
    if not is_valid_url(url):
        raise ValidationError("Invalid URL format", details={"url": url})

    host = extract_domain(url)
    if host == "localhost" or host.endswith(".localhost"):
        raise ValidationError("Access to localhost is blocked", details={"url": url})

    try:
        literal = ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        literal = None

    if literal is not None:
        addresses = [literal]
    elif not resolve:
        return host
    else:
        loop = asyncio.get_running_loop()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(host, None, type=socket.SOCK_STREAM),
                timeout=DNS_TIMEOUT_SECONDS,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            raise ValidationError(
                f"DNS lookup failed for {host}: {exc}", details={"url": url}
            ) from exc
        addresses = []
        for info in infos:
            try:
                addresses.append(ipaddress.ip_address(str(info[4][0]).split("%", 1)[0]))
            except ValueError:
                continue
        if not addresses:
            raise ValidationError("Could not resolve IP address", details={"url": url})

    for ip in addresses:
        reason = _blocked_address(ip)
        if reason:
            raise ValidationError(
                f"Access to {reason} IP address {ip} is blocked",
                details={"url": url},
            )
    return host
