"""URL validation with SSRF protection.

Every URL the archiver requests, including each redirect target, passes
through :func:`validate_url`: the scheme must be http(s) and every address
the hostname resolves to must be publicly routable.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import socket
from typing import List, Union
from urllib.parse import SplitResult, urlsplit

from .models import FailureReason, FetchError, Result

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")

_INVALID_HOST_CHARS = re.compile(r"[\s<>\\^`{|}\"]")

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def _parse_ip(value: str) -> IPAddress:
    # Drop an IPv6 zone index such as fe80::1%eth0
    return ipaddress.ip_address(value.split("%", 1)[0])


def is_ip_literal(host: str) -> bool:
    try:
        _parse_ip(host)
    except ValueError:
        return False
    return True


def is_private_address(address: str) -> bool:
    """Return True for any address that is not safe to request.

    Covers RFC1918/RFC4193 private ranges, loopback, link-local, multicast,
    reserved, unspecified and shared (CGNAT) space, including IPv4-mapped
    IPv6 forms of those.
    """
    ip = _parse_ip(address)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
        or not ip.is_global
    )


def resolve_host(hostname: str) -> List[str]:
    """Resolve *hostname* to its IP addresses.

    IP literals are returned as-is without a DNS query.

    Raises:
        socket.gaierror: When the name does not resolve.
        UnicodeError: When an internationalized name cannot be IDNA-encoded.
    """
    if is_ip_literal(hostname):
        return [hostname]

    infos = socket.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP)
    addresses = sorted({info[4][0] for info in infos})
    if not addresses:
        raise socket.gaierror(f"No addresses found for {hostname}")
    return addresses


def _invalid(message: str, url: str, **details) -> Result:
    error = FetchError(
        error_code=FailureReason.INVALID_URL,
        message=message,
        url=url,
        details=details,
    )
    return Result.failure(error.message, error)


def _parse(url: str) -> Result:
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
        parts.port  # raises ValueError on a non-numeric or out-of-range port
    except (ValueError, AttributeError) as exc:
        return _invalid("Malformed URL", url, error=str(exc))

    if host and _INVALID_HOST_CHARS.search(host):
        return _invalid("Malformed URL", url, hostname=host)

    if not parts.scheme and not host:
        return _invalid("Invalid URL format", url)

    return Result.success(parts)


def _check_scheme(parts: SplitResult, url: str) -> Result:
    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        return _invalid(
            "URL scheme must be http or https",
            url,
            scheme=parts.scheme,
            allowed_schemes=list(ALLOWED_SCHEMES),
        )
    if not parts.hostname:
        return _invalid("Invalid URL format", url)
    return Result.success()


def _check_for_private_ips(hostname: str, url: str) -> Result:
    try:
        addresses = resolve_host(hostname)
    except (socket.gaierror, socket.herror, UnicodeError) as exc:
        logger.info("DNS resolution failed for %s: %s", hostname, exc)
        return _invalid(
            "DNS resolution failed", url, hostname=hostname, error=str(exc)
        )

    blocked = [a for a in addresses if is_private_address(a)]
    if blocked:
        logger.warning("Blocked %s: %s resolves to %s", url, hostname, blocked)
        error = FetchError(
            error_code=FailureReason.BLOCKED,
            message="URL resolves to private IP address (SSRF protection)",
            url=url,
            details={
                "hostname": hostname,
                "validation_reason": "private_ip",
                "addresses": blocked,
            },
        )
        return Result.failure(error.message, error)

    return Result.success()


def validate_url(url: str) -> Result:
    """Validate *url* for safe fetching.

    Returns:
        Result whose data is the normalized URL string on success, or a
        :class:`FetchError` (``invalid_url`` or ``blocked``) on failure.
    """
    parsed = _parse(url)
    if parsed.is_failure:
        return parsed
    parts: SplitResult = parsed.data

    scheme_check = _check_scheme(parts, url)
    if scheme_check.is_failure:
        return scheme_check

    normalized = parts.geturl()

    ip_check = _check_for_private_ips(parts.hostname, normalized)
    if ip_check.is_failure:
        return ip_check

    return Result.success(normalized)
