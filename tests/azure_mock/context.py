"""Azure mock context for SDK backend tests.

Patches the credential classes and StorageManagementClient used by
storage_firewall so StorageSdkFirewall.from_config() runs against
in-memory state.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any
from unittest import mock

from .credential import MockCredential, create_mock_credential
from .storage import MockStorageAccount, MockStorageManagementClient


class MockAzureContext:
    """Context manager for Azure SDK mocking.

    Patches:
    - storage_firewall.security.AzureCliCredential → MockCredential
    - storage_firewall.security.ManagedIdentityCredential → MockCredential
    - storage_firewall.storage_client.StorageManagementClient → MockStorageManagementClient

    Usage:
        with MockAzureContext(accounts=[("rg", make_account())]) as ctx:
            backend = StorageSdkFirewall.from_config(config)
            backend.add_ip_rule("203.0.113.7")
            assert ctx.client.ip_rules("rg", "account") == ["203.0.113.7"]
    """

    def __init__(self, *, accounts: list[tuple[str, MockStorageAccount]] | None = None) -> None:
        self._accounts = accounts or []
        self._client: MockStorageManagementClient | None = None
        self._credential: MockCredential | None = None
        self._patches: list[Any] = []
        self.credential_kwargs: list[dict[str, Any]] = []

    @property
    def client(self) -> MockStorageManagementClient:
        if self._client is None:
            raise RuntimeError("MockAzureContext must be used as a context manager")
        return self._client

    @property
    def credential(self) -> MockCredential:
        if self._credential is None:
            raise RuntimeError("MockAzureContext must be used as a context manager")
        return self._credential

    def __enter__(self) -> MockAzureContext:
        self._client = MockStorageManagementClient(accounts=self._accounts)

        def create_credential(**kwargs: Any) -> MockCredential:
            self.credential_kwargs.append(kwargs)
            self._credential = create_mock_credential(client_id=kwargs.get("client_id"))
            return self._credential

        def create_client(credential: Any, subscription_id: str) -> MockStorageManagementClient:
            self.client.credential = credential
            self.client.subscription_id = subscription_id
            return self.client

        self._patches = [
            mock.patch(
                "storage_firewall.security.AzureCliCredential", side_effect=create_credential
            ),
            mock.patch(
                "storage_firewall.security.ManagedIdentityCredential",
                side_effect=create_credential,
            ),
            mock.patch(
                "storage_firewall.storage_client.StorageManagementClient",
                side_effect=create_client,
            ),
        ]
        for patch in self._patches:
            patch.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        for patch in reversed(self._patches):
            patch.stop()
        self._patches.clear()


@contextmanager
def mock_azure_context(
    *, accounts: list[tuple[str, MockStorageAccount]] | None = None
) -> Generator[MockAzureContext, None, None]:
    """Convenience wrapper around MockAzureContext."""
    with MockAzureContext(accounts=accounts) as ctx:
        yield ctx
