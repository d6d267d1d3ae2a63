"""Client address resolution for rate limiting and audit logs.

Forwarding headers are client-supplied. The resolved address is good enough
to bucket requests and to annotate logs; it is never used to grant access.
"""
from __future__ import annotations

from ipaddress import ip_address
from typing import Mapping, Optional

UNKNOWN_CLIENT = "unknown"


def _parse_ip(candidate: str) -> Optional[str]:
    try:
        return str(ip_address(candidate))
    except ValueError:
        return None


def _from_forwarded_for(value: str) -> Optional[str]:
    first = value.split(",")[0].strip()
    return _parse_ip(first) if first else None


def _from_forwarded(value: str) -> Optional[str]:
    for segment in value.split(";"):
        for part in segment.split(","):
            trimmed = part.strip()
            if trimmed[:4].lower() != "for=":
                continue
            candidate = trimmed[4:].strip('"[]')
            parsed = _parse_ip(candidate)
            if parsed:
                return parsed
    return None


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    # plain mappings: first key matching case-insensitively
    for key, candidate in headers.items():
        if key.lower() == name:
            return candidate
    return None


def resolve_client_ip(peer: Optional[str], headers: Mapping[str, str]) -> str:
    """Pick one address to represent the client.

    Order: first ``X-Forwarded-For`` entry, then the first parseable ``for=``
    in ``Forwarded``, then the peer address. Never raises.

    >>> resolve_client_ip("10.0.0.5", {"x-forwarded-for": "203.0.113.7, 10.0.0.1"})
    '203.0.113.7'
    >>> resolve_client_ip("10.0.0.5", {})
    '10.0.0.5'
    """
    forwarded_for = _header(headers, "x-forwarded-for")
    if forwarded_for:
        resolved = _from_forwarded_for(forwarded_for)
        if resolved:
            return resolved

    forwarded = _header(headers, "forwarded")
    if forwarded:
        resolved = _from_forwarded(forwarded)
        if resolved:
            return resolved

    return peer or UNKNOWN_CLIENT


def request_client_ip(request) -> str:
    """Resolve the client address of a Starlette request."""
    peer = request.client.host if request.client else None
    return resolve_client_ip(peer, request.headers)
