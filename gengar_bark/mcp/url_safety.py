# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
SSRF protection for user-supplied MCP server URLs.

A URL is accepted only if it is an absolute http(s) URL whose host is not
an internal alias and does not resolve to a loopback, private, link-local,
unspecified, multicast or reserved address. Hostnames are resolved and
every returned address is checked. A resolution failure or timeout is
treated as unsafe.
"""

import asyncio
import ipaddress
import socket
from typing import Awaitable, Callable, List, Optional, Union
from urllib.parse import urlsplit

from gengar_bark.logging_config import get_logger
from gengar_bark.mcp.models import URLValidationResult


logger = get_logger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
Resolver = Callable[[str, int], Awaitable[List[str]]]

ALLOWED_SCHEMES = ("http", "https")

BLOCKED_HOSTNAMES = frozenset({
    "localhost",
    "localhost.localdomain",
    "ip6-localhost",
    "ip6-loopback",
    "metadata",
    "metadata.google.internal",
    "instance-data",
    "kubernetes",
    "kubernetes.default",
    "kubernetes.default.svc",
})

BLOCKED_SUFFIXES = (
    ".localhost",
    ".localdomain",
    ".local",
    ".internal",
    ".cluster.local",
)

CARRIER_GRADE_NAT = ipaddress.ip_network("100.64.0.0/10")


async def system_resolver(host: str, port: int) -> List[str]:
    """Resolve all A/AAAA records for a host through the event loop."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def classify_address(ip: IPAddress) -> Optional[str]:
    """
    Return the reason an address is blocked, or None if it is public.

    IPv4-mapped IPv6 addresses are judged by their IPv4 form.
    """
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    if ip.is_loopback:
        return "SSRF protection: localhost addresses are not allowed"
    if ip.is_unspecified:
        return "SSRF protection: unspecified addresses are not allowed"
    if ip.is_link_local:
        return "SSRF protection: link-local addresses are not allowed"
    if ip.is_multicast:
        return "SSRF protection: multicast addresses are not allowed"
    if isinstance(ip, ipaddress.IPv4Address) and ip in CARRIER_GRADE_NAT:
        return "SSRF protection: private network addresses are not allowed"
    if ip.is_private:
        return "SSRF protection: private network addresses are not allowed"
    if ip.is_reserved or not ip.is_global:
        return "SSRF protection: reserved addresses are not allowed"
    return None


def _is_blocked_hostname(hostname: str) -> bool:
    return hostname in BLOCKED_HOSTNAMES or hostname.endswith(BLOCKED_SUFFIXES)


class URLSafetyValidator:
    """
    Classifies candidate MCP server URLs as safe or unsafe.

    The resolver is injectable so that tests can run without network
    access; by default the event loop's ``getaddrinfo`` is used.
    """

    def __init__(
        self,
        resolver: Optional[Resolver] = None,
        dns_timeout_seconds: float = 2.0,
        require_https: bool = False,
    ):
        self.resolver = resolver or system_resolver
        self.dns_timeout_seconds = dns_timeout_seconds
        self.require_https = require_https

    async def validate(self, url: str) -> URLValidationResult:
        """
        Check a URL against the SSRF policy.

        Args:
            url: Candidate server URL

        Returns:
            URLValidationResult with ``safe`` and, when unsafe, a ``reason``
        """
        try:
            parts = urlsplit((url or "").strip())
            port = parts.port
        except ValueError:
            return URLValidationResult.unsafe("Invalid URL format")

        scheme = parts.scheme.lower()
        if scheme not in ALLOWED_SCHEMES:
            return URLValidationResult.unsafe(
                f"Invalid protocol: {scheme or 'none'}. Only HTTP and HTTPS are allowed"
            )
        if self.require_https and scheme != "https":
            return URLValidationResult.unsafe(
                f"Invalid protocol: {scheme}. Only HTTPS is allowed"
            )

        hostname = (parts.hostname or "").rstrip(".")
        if not hostname:
            return URLValidationResult.unsafe("Invalid URL format: missing hostname")

        if _is_blocked_hostname(hostname):
            return URLValidationResult.unsafe(
                "SSRF protection: localhost and internal hostnames are not allowed"
            )

        literal = _parse_ip(hostname)
        if literal is not None:
            reason = classify_address(literal)
            return URLValidationResult.unsafe(reason) if reason else URLValidationResult.ok()

        if port is None:
            port = 443 if scheme == "https" else 80

        try:
            addresses = await asyncio.wait_for(
                self.resolver(hostname, port),
                timeout=self.dns_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("DNS resolution timed out", extra={"hostname": hostname})
            return URLValidationResult.unsafe(f"DNS resolution timed out for {hostname}")
        except OSError as e:
            logger.warning(
                "DNS resolution failed",
                extra={"hostname": hostname, "error": str(e)},
            )
            return URLValidationResult.unsafe(f"DNS resolution failed for {hostname}")

        if not addresses:
            return URLValidationResult.unsafe(f"DNS resolution failed for {hostname}")

        for address in addresses:
            ip = _parse_ip(address)
            if ip is None:
                return URLValidationResult.unsafe(
                    f"DNS resolution returned an invalid address for {hostname}"
                )
            reason = classify_address(ip)
            if reason:
                logger.debug(
                    "Hostname resolves to blocked address",
                    extra={"hostname": hostname, "address": address},
                )
                return URLValidationResult.unsafe(reason)

        return URLValidationResult.ok()


def _parse_ip(value: str) -> Optional[IPAddress]:
    # Drop IPv6 zone ids such as fe80::1%eth0
    try:
        return ipaddress.ip_address(value.split("%", 1)[0])
    except ValueError:
        return None
