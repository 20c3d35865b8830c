"""Network-related utility functions."""

from __future__ import annotations

import ipaddress

from typing import Final

from starlette.requests import Request

_TRUSTED_PROXY_RANGES: Final[
    tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...]
] = (
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
)


def _normalise_ip(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def _is_trusted_proxy(host: str | None) -> bool:
    if not host:
        return False
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    return any(ip in network for network in _TRUSTED_PROXY_RANGES)


def get_client_ip(request: Request) -> str | None:
    """Return the originating client IP address, or ``None`` when unknown.

    Forwarding headers (``X-Forwarded-For`` first hop, then ``X-Real-IP``) are
    only honoured when the peer is a private-range proxy or has no usable
    address of its own.
    """

    host_ip: str | None = None
    if request.client and request.client.host:
        host_ip = _normalise_ip(request.client.host)
        if host_ip is not None and not _is_trusted_proxy(host_ip):
            return host_ip

    xff = request.headers.get("X-Forwarded-For")
    if xff:
        first = _normalise_ip(xff.split(",")[0])
        if first:
            return first
    real_ip = _normalise_ip(request.headers.get("X-Real-IP"))
    if real_ip:
        return real_ip

    return host_ip
