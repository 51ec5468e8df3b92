"""Tests for public IP detection."""

from __future__ import annotations

import pytest
import requests
import responses

from storage_firewall.addresses import IPv4Address
from storage_firewall.public_ip import (
    DEFAULT_IP_ECHO_SERVICES,
    IPDetectionFailed,
    detect_public_ip,
)

IPIFY, IFCONFIG, ICANHAZIP, AMAZON = DEFAULT_IP_ECHO_SERVICES


class TestDetectPublicIp:
    """Tests for detect_public_ip."""

    @responses.activate
    def test_first_service_wins(self) -> None:
        responses.add(responses.GET, IPIFY, body="203.0.113.7")

        assert detect_public_ip() == IPv4Address("203.0.113.7")
        assert len(responses.calls) == 1

    @responses.activate
    def test_trailing_newline_is_stripped(self) -> None:
        responses.add(responses.GET, IPIFY, body="203.0.113.7\n")

        assert str(detect_public_ip()) == "203.0.113.7"

    @responses.activate
    def test_falls_back_in_order(self) -> None:
        """Test that errors and garbage move on to the next service."""
        responses.add(responses.GET, IPIFY, status=503)
        responses.add(responses.GET, IFCONFIG, body="<html>blocked</html>")
        responses.add(responses.GET, ICANHAZIP, body=requests.ConnectionError("refused"))
        responses.add(responses.GET, AMAZON, body="198.51.100.1\n")

        address = detect_public_ip()

        assert address == IPv4Address("198.51.100.1")
        assert [call.request.url.rstrip("/") for call in responses.calls] == [
            url.rstrip("/") for url in DEFAULT_IP_ECHO_SERVICES
        ]

    @responses.activate
    def test_out_of_range_response_rejected(self) -> None:
        responses.add(responses.GET, IPIFY, body="300.1.1.1")
        responses.add(responses.GET, IFCONFIG, body="10.1.1.1")

        assert detect_public_ip() == IPv4Address("10.1.1.1")

    @responses.activate
    def test_all_services_fail(self) -> None:
        for url in DEFAULT_IP_ECHO_SERVICES:
            responses.add(responses.GET, url, status=500)

        with pytest.raises(IPDetectionFailed) as exc_info:
            detect_public_ip()

        assert [url for url, _ in exc_info.value.attempts] == list(DEFAULT_IP_ECHO_SERVICES)
        assert all(reason == "HTTPError" for _, reason in exc_info.value.attempts)

    @responses.activate
    def test_unusable_response_reason(self) -> None:
        responses.add(responses.GET, IPIFY, body="not an address")

        with pytest.raises(IPDetectionFailed) as exc_info:
            detect_public_ip(services=(IPIFY,))

        assert exc_info.value.attempts == [(IPIFY, "unusable response (invalid format)")]

    @responses.activate
    def test_sends_curl_user_agent(self) -> None:
        responses.add(responses.GET, IPIFY, body="203.0.113.7")

        detect_public_ip()

        assert responses.calls[0].request.headers["User-Agent"].startswith("curl/")

    def test_timeout_is_passed_per_attempt(self) -> None:
        class RecordingSession(requests.Session):
            def __init__(self) -> None:
                super().__init__()
                self.timeouts: list[float] = []

            def get(self, url, **kwargs):  # type: ignore[no-untyped-def,override]
                self.timeouts.append(kwargs["timeout"])
                raise requests.Timeout("timed out")

        session = RecordingSession()

        with pytest.raises(IPDetectionFailed) as exc_info:
            detect_public_ip(timeout=3, session=session)

        assert session.timeouts == [3, 3, 3, 3]
        assert {reason for _, reason in exc_info.value.attempts} == {"Timeout"}

    def test_no_services(self) -> None:
        with pytest.raises(IPDetectionFailed) as exc_info:
            detect_public_ip(services=())

        assert "no services" in str(exc_info.value)
