"""Tests for storage endpoint DNS inspection."""

from __future__ import annotations

import socket

import pytest

from storage_firewall.dns_check import (
    DnsLookupFailed,
    Resolver,
    endpoint_hostname,
    inspect_endpoint,
)

HOST = "stgdemopoceastus201.blob.core.windows.net"


def resolver_for(canonical: str, aliases: list[str], addresses: list[str]) -> Resolver:
    def resolve(hostname: str) -> tuple[str, list[str], list[str]]:
        assert hostname == HOST
        return canonical, aliases, addresses

    return resolve


class TestEndpointHostname:
    """Tests for endpoint_hostname."""

    def test_url(self) -> None:
        assert endpoint_hostname(f"https://{HOST}/") == HOST

    def test_bare_hostname(self) -> None:
        assert endpoint_hostname(HOST) == HOST

    def test_no_hostname(self) -> None:
        with pytest.raises(ValueError):
            endpoint_hostname("https:///path")


class TestInspectEndpoint:
    """Tests for inspect_endpoint."""

    def test_private_endpoint(self) -> None:
        resolver = resolver_for(
            "stgdemopoceastus201.privatelink.blob.core.windows.net.",
            [HOST],
            ["10.0.1.4"],
        )

        resolution = inspect_endpoint(f"https://{HOST}/", resolver=resolver)

        assert resolution.canonical_name == "stgdemopoceastus201.privatelink.blob.core.windows.net"
        assert resolution.uses_private_link
        assert resolution.resolves_privately

    def test_private_link_alias_with_public_address(self) -> None:
        """Test the missing private DNS zone case."""
        resolver = resolver_for(
            "blob.bn9prdstr08a.store.core.windows.net",
            [HOST, "stgdemopoceastus201.privatelink.blob.core.windows.net"],
            ["20.60.10.4"],
        )

        resolution = inspect_endpoint(HOST, resolver=resolver)

        assert resolution.uses_private_link
        assert not resolution.resolves_privately

    def test_public_endpoint(self) -> None:
        resolver = resolver_for("blob.bn9prdstr08a.store.core.windows.net", [HOST], ["20.60.10.4"])

        resolution = inspect_endpoint(HOST, resolver=resolver)

        assert not resolution.uses_private_link
        assert not resolution.resolves_privately

    def test_lookup_failure(self) -> None:
        def fail(hostname: str) -> tuple[str, list[str], list[str]]:
            raise socket.gaierror(-2, "Name or service not known")

        with pytest.raises(DnsLookupFailed) as exc_info:
            inspect_endpoint(HOST, resolver=fail)

        assert HOST in str(exc_info.value)
