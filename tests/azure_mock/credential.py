"""Mock Azure credential for secretless testing.

Stands in for AzureCliCredential and ManagedIdentityCredential, returning
fake tokens without Azure connectivity.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

# Token validity duration
TOKEN_VALIDITY_HOURS = 1


class MockCredentialError(Exception):
    """Simulates azure.identity's CredentialUnavailableError."""

    pass


@dataclass
class MockAccessToken:
    """Mimics azure.core.credentials.AccessToken structure."""

    token: str
    expires_on: int


class MockCredential:
    """Mock token credential.

    Records get_token calls for test assertions and can be told to fail.
    """

    def __init__(self, client_id: str | None = None) -> None:
        self._client_id = client_id
        self._get_token_calls: list[tuple[str, ...]] = []
        self._token_counter = 0
        self._should_fail = False

    @property
    def client_id(self) -> str | None:
        return self._client_id

    @property
    def get_token_call_count(self) -> int:
        return len(self._get_token_calls)

    def set_failure(self, should_fail: bool) -> None:
        self._should_fail = should_fail

    def get_token(self, *scopes: str, **kwargs: Any) -> MockAccessToken:
        self._get_token_calls.append(scopes)
        if self._should_fail:
            raise MockCredentialError("Simulated authentication failure")

        self._token_counter += 1
        identity_part = self._client_id or "az-cli"
        expires_on = datetime.now(UTC) + timedelta(hours=TOKEN_VALIDITY_HOURS)
        return MockAccessToken(
            token=f"mock-token-{self._token_counter}-{identity_part}",
            expires_on=int(expires_on.timestamp()),
        )

    def close(self) -> None:
        pass


def create_mock_credential(client_id: str | None = None) -> MockCredential:
    return MockCredential(client_id=client_id)
