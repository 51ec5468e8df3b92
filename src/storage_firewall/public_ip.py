"""Public IP detection via external echo services.

Services are tried in a fixed order and the first response that is itself a
valid IPv4 address wins. Each attempt is bounded by a timeout.
"""

from __future__ import annotations

import logging

import requests

from .addresses import InvalidAddress, IPv4Address
from .config import DEFAULT_IP_ECHO_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_IP_ECHO_SERVICES: tuple[str, ...] = (
    "https://api.ipify.org",
    "https://ifconfig.me/ip",
    "https://icanhazip.com",
    "https://checkip.amazonaws.com",
)

# Some echo services return HTML to browser user agents
_USER_AGENT = "curl/8.5.0"


class IPDetectionFailed(Exception):
    """Raised when no echo service returned a usable address."""

    def __init__(self, attempts: list[tuple[str, str]]) -> None:
        self.attempts = attempts
        details = "; ".join(f"{url}: {reason}" for url, reason in attempts) or "no services"
        super().__init__(f"Failed to detect public IP address ({details})")


def detect_public_ip(
    services: tuple[str, ...] = DEFAULT_IP_ECHO_SERVICES,
    timeout: float = DEFAULT_IP_ECHO_TIMEOUT_SECONDS,
    session: requests.Session | None = None,
) -> IPv4Address:
    """Detect the caller's public IPv4 address.

    Args:
        services: Echo service URLs, tried in order.
        timeout: Per-attempt timeout in seconds.
        session: Optional requests session (a new one is used otherwise).

    Returns:
        The first valid address returned by a service.

    Raises:
        IPDetectionFailed: If every service failed or returned garbage.
    """
    http = session or requests.Session()
    attempts: list[tuple[str, str]] = []

    try:
        for url in services:
            try:
                response = http.get(url, timeout=timeout, headers={"User-Agent": _USER_AGENT})
                response.raise_for_status()
            except requests.RequestException as e:
                logger.debug("IP echo service failed", extra={"url": url, "error": str(e)})
                attempts.append((url, type(e).__name__))
                continue

            body = response.text.strip()
            try:
                address = IPv4Address(body)
            except InvalidAddress as e:
                logger.debug(
                    "IP echo service returned unusable data",
                    extra={"url": url, "reason": e.reason.value},
                )
                attempts.append((url, f"unusable response ({e.reason.value})"))
                continue

            logger.info("Detected public IP", extra={"ip": str(address), "url": url})
            return address
    finally:
        if session is None:
            http.close()

    raise IPDetectionFailed(attempts)
