"""Storage endpoint DNS inspection.

Shows whether the blob endpoint resolves through Private Link (a
``*.privatelink.*`` alias in the CNAME chain) and whether the resolved
addresses are private, i.e. whether traffic would reach the private endpoint.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

PRIVATE_LINK_MARKER = ".privatelink."

Resolver = Callable[[str], tuple[str, list[str], list[str]]]


class DnsLookupFailed(Exception):
    """Raised when the endpoint hostname does not resolve."""

    pass


@dataclass(frozen=True)
class EndpointResolution:
    """How a storage endpoint hostname resolved."""

    hostname: str
    canonical_name: str
    aliases: tuple[str, ...]
    addresses: tuple[str, ...]

    @property
    def uses_private_link(self) -> bool:
        names = (self.canonical_name, *self.aliases)
        return any(PRIVATE_LINK_MARKER in name.lower() for name in names)

    @property
    def resolves_privately(self) -> bool:
        return bool(self.addresses) and all(
            ipaddress.ip_address(address).is_private for address in self.addresses
        )


def endpoint_hostname(endpoint: str) -> str:
    """Extract the hostname from an endpoint URL or bare hostname."""
    text = endpoint.strip()
    if "://" not in text:
        text = f"https://{text}"
    hostname = urlsplit(text).hostname
    if not hostname:
        raise ValueError(f"No hostname in endpoint: {endpoint!r}")
    return hostname


def inspect_endpoint(endpoint: str, resolver: Resolver | None = None) -> EndpointResolution:
    """Resolve a storage endpoint and report its CNAME chain and addresses.

    Raises:
        DnsLookupFailed: If the hostname cannot be resolved.
    """
    hostname = endpoint_hostname(endpoint)
    try:
        canonical_name, aliases, addresses = (resolver or socket.gethostbyname_ex)(hostname)
    except OSError as e:
        raise DnsLookupFailed(f"DNS lookup failed for {hostname}: {e}") from e

    resolution = EndpointResolution(
        hostname=hostname,
        canonical_name=canonical_name.rstrip("."),
        aliases=tuple(alias.rstrip(".") for alias in aliases),
        addresses=tuple(addresses),
    )
    logger.info(
        "Resolved storage endpoint",
        extra={
            "hostname": hostname,
            "canonical_name": resolution.canonical_name,
            "addresses": list(resolution.addresses),
            "private_link": resolution.uses_private_link,
        },
    )
    return resolution
