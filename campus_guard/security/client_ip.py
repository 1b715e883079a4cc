"""Client IP resolution from trust-ordered request headers.

Headers injected by a CDN or hosting platform carry a single client IP
and win over everything else (HIGH confidence). Reverse-proxy and
standard forwarding headers come next (MEDIUM). The socket peer address
is only a fallback (LOW), as is the absence of any usable value.

Pure function of its inputs: no I/O, no state.
"""

import ipaddress
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW = "LOW"

# Platform/CDN-injected headers, most trusted first
HIGH_CONFIDENCE_HEADERS = (
    "cf-connecting-ip",  # Cloudflare
    "true-client-ip",  # Cloudflare Enterprise / Akamai
    "x-azure-clientip",
    "fastly-client-ip",
    "x-akamai-client-ip",
    "x-vercel-forwarded-for",
    "x-vercel-ip",
    "x-nf-client-connection-ip",  # Netlify
)

# Reverse-proxy real-IP headers, then standard forwarding headers
MEDIUM_CONFIDENCE_HEADERS = (
    "x-real-ip",
    "x-client-ip",
    "x-forwarded-for",
    "forwarded",  # RFC 7239
)

HEADER_PRIORITY = HIGH_CONFIDENCE_HEADERS + MEDIUM_CONFIDENCE_HEADERS

_FORWARDED_FOR = re.compile(r'for=\s*"?([^";,]+)"?', re.IGNORECASE)

# RFC 1918, carrier-grade NAT (RFC 6598) and IPv6 unique local
_INTERNAL_NETWORKS = tuple(
    ipaddress.ip_network(net)
    for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "100.64.0.0/10", "fc00::/7")
)


@dataclass
class ClientIdentity:
    ip: str | None  # None = could not be determined
    confidence: str  # HIGH | MEDIUM | LOW
    source: str = "none"  # header name, "socket" or "none"
    chain: list[str] = field(default_factory=list)  # every valid IP seen, in header order


def resolve_client_identity(
    headers: Mapping[str, str], socket_ip: str | None = None
) -> ClientIdentity:
    """Derive the best-effort client IP from request headers.

    The first public address in header priority order wins, left-most
    within a header. Internal hops (private, loopback, link-local) are
    used only when no header carries anything else.

    Args:
        headers: Request headers. Lookup is case-insensitive and repeated
            header lines are read in arrival order.
        socket_ip: Direct peer address, used only when no header yields an IP.
    """
    lowered = _merge_headers(headers)

    chain: list[str] = []
    resolved: tuple[str, str] | None = None  # (ip, header)
    internal: tuple[str, str] | None = None
    for header in HEADER_PRIORITY:
        value = lowered.get(header)
        if not value:
            continue
        for ip in parse_header_ips(header, value):
            if ip not in chain:
                chain.append(ip)
            if is_internal_ip(ip):
                if internal is None:
                    internal = (ip, header)
            elif resolved is None:
                resolved = (ip, header)

    resolved = resolved or internal
    if resolved is not None:
        ip, header = resolved
        confidence = HIGH if header in HIGH_CONFIDENCE_HEADERS else MEDIUM
        return ClientIdentity(ip=ip, confidence=confidence, source=header, chain=chain)

    fallback = clean_ip(socket_ip) if socket_ip else None
    if fallback is not None:
        return ClientIdentity(ip=fallback, confidence=LOW, source="socket", chain=[fallback])

    return ClientIdentity(ip=None, confidence=LOW, source="none", chain=chain)


def _merge_headers(headers: Mapping[str, str]) -> dict[str, str]:
    # Starlette Headers.items() yields every raw line; join repeats as one list
    merged: dict[str, str] = {}
    for name, value in headers.items():
        name = name.lower()
        merged[name] = f"{merged[name]}, {value}" if name in merged else value
    return merged


def parse_header_ips(header: str, value: str) -> list[str]:
    """Extract valid IPs from a header value, left-most first."""
    if header == "forwarded" or "for=" in value.lower():
        candidates = _FORWARDED_FOR.findall(value)
    else:
        candidates = value.split(",")

    ips = []
    for candidate in candidates:
        ip = clean_ip(candidate)
        if ip is not None:
            ips.append(ip)
    return ips


def clean_ip(value: str) -> str | None:
    """Normalize one IP token: strip quotes, brackets, port and the IPv4-mapped prefix.

    Returns None when the token is not an IP address.
    """
    value = value.strip().strip("\"'")
    if value.startswith("["):
        # [2001:db8::1]:4711
        end = value.find("]")
        value = value[1:end] if end != -1 else value[1:]
    elif value.count(":") == 1:
        # 203.0.113.7:8080
        value = value.split(":", 1)[0]

    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        return None

    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return str(addr)


def is_internal_ip(ip: str) -> bool:
    """True for addresses that identify a network hop rather than a client.

    Documentation ranges (192.0.2.0/24, 198.51.100.0/24, 203.0.113.0/24)
    are not internal.
    """
    addr = ipaddress.ip_address(ip)
    if addr.is_loopback or addr.is_link_local or addr.is_unspecified or addr.is_multicast:
        return True
    return any(addr in network for network in _INTERNAL_NETWORKS if network.version == addr.version)


def anonymize_ip(ip: str | None) -> str:
    """Mask an IP for logging: IPv4 keeps /24, IPv6 keeps /48."""
    if not ip:
        return "0.0.0.0"
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return "0.0.0.0"
    prefix = 24 if addr.version == 4 else 48
    return str(ipaddress.ip_network(f"{addr}/{prefix}", strict=False).network_address)
