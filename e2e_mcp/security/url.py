from __future__ import annotations

import ipaddress
from typing import Iterable
from urllib.parse import urlsplit, urlunsplit

from e2e_mcp.result import Result


ALLOWED_SCHEMES = frozenset({"http", "https"})

_LOOPBACK_NAMES = frozenset({"localhost", "::1"})

_PRIVATE_NETWORKS = (
    # Chromium connects to 0.0.0.0 as if it were localhost.
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("::1/128"),
)

_RADIX_DIGITS = {10: "0123456789", 8: "01234567", 16: "0123456789abcdef"}


def _ipv4_number(part: str) -> int:
    radix = 10
    if part[:2] in ("0x", "0X"):
        part, radix = part[2:], 16
    elif len(part) > 1 and part.startswith("0"):
        part, radix = part[1:], 8
    if not part:
        return 0
    if any(c not in _RADIX_DIGITS[radix] for c in part.lower()):
        raise ValueError(f"not an IPv4 number: {part!r}")
    return int(part, radix)


def _ends_in_number(part: str) -> bool:
    if not part:
        return False
    if all(c in _RADIX_DIGITS[10] for c in part):
        return True
    try:
        _ipv4_number(part)
    except ValueError:
        return False
    return True


def canonical_ipv4(hostname: str) -> str | None:
    """
    Parse a host the way browsers do when its last label is numeric.

    ``127.1``, ``2130706433``, ``0x7f000001`` and ``0177.0.0.1`` all come back
    as ``127.0.0.1``. Returns None for ordinary domain names and raises
    ValueError for numeric hosts a browser would reject.
    """
    parts = str(hostname).split(".")
    if len(parts) > 1 and parts[-1] == "":
        parts.pop()
    if not _ends_in_number(parts[-1]):
        return None
    if len(parts) > 4 or any(p == "" for p in parts):
        raise ValueError(f"invalid IPv4 host: {hostname}")

    numbers = [_ipv4_number(p) for p in parts]
    if any(n > 255 for n in numbers[:-1]) or numbers[-1] >= 256 ** (5 - len(numbers)):
        raise ValueError(f"IPv4 host out of range: {hostname}")

    value = numbers[-1]
    for i, n in enumerate(numbers[:-1]):
        value += n * 256 ** (3 - i)
    return str(ipaddress.IPv4Address(value))


def canonical_host(hostname: str) -> str:
    """Lowercase, drop the trailing dot and normalize numeric IPv4 forms."""
    h = str(hostname or "").strip().lower().strip("[]").rstrip(".")
    if not h or ":" in h:
        return h
    return canonical_ipv4(h) or h


def is_private_host(hostname: str) -> bool:
    """Syntactic check only: hostnames are never resolved."""
    try:
        h = canonical_host(hostname)
    except ValueError:
        return False
    if h in _LOOPBACK_NAMES:
        return True
    try:
        ip = ipaddress.ip_address(h)
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return any(ip in net for net in _PRIVATE_NETWORKS)


def matches_allowed_host(hostname: str, pattern: str) -> bool:
    p = str(pattern or "").strip().lower().rstrip(".")
    if p.startswith("*."):
        return hostname.endswith("." + p[2:])
    return hostname == p


def _netloc(parts, hostname: str) -> str:
    host = f"[{hostname}]" if ":" in hostname else hostname
    userinfo = ""
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo += ":" + parts.password
        userinfo += "@"
    port = f":{parts.port}" if parts.port is not None else ""
    return f"{userinfo}{host}{port}"


def validate_url(url: str, *, allowed_hosts: Iterable[str] | None = None) -> Result:
    raw = str(url or "").strip()
    try:
        parts = urlsplit(raw)
        scheme = (parts.scheme or "").lower()
        hostname = canonical_host(parts.hostname or "")
        # Accessing .port validates it.
        _ = parts.port
    except ValueError:
        return Result.failure("invalid_url", "Invalid URL format", url=raw)

    if not scheme:
        return Result.failure("invalid_url", "Invalid URL format", url=raw)

    if scheme not in ALLOWED_SCHEMES:
        return Result.failure(
            "invalid_protocol",
            f"Protocol {scheme}: is not allowed. Only HTTP and HTTPS are permitted",
            url=raw,
            protocol=f"{scheme}:",
        )

    if not hostname:
        return Result.failure("invalid_url", "Invalid URL format", url=raw)

    if is_private_host(hostname):
        return Result.failure(
            "private_ip",
            f"Access to private IP address is not allowed: {hostname}",
            url=raw,
            hostname=hostname,
        )

    allowed = [h for h in (allowed_hosts or ()) if str(h).strip()]
    if allowed and not any(matches_allowed_host(hostname, p) for p in allowed):
        return Result.failure(
            "host_not_allowed",
            f"Hostname {hostname} is not in allowed hosts list",
            url=raw,
            hostname=hostname,
            allowed_hosts=list(allowed),
        )

    normalized = urlunsplit((scheme, _netloc(parts, hostname), parts.path or "/", parts.query, parts.fragment))
    return Result.success(normalized)
