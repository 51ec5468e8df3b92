"""Azure mocks for testing without Azure connectivity.

- MockFirewall: in-memory FirewallBackend for reconciler and CLI tests
- MockStorageManagementClient: storage_accounts operations for the SDK backend
- MockAzureContext: patches credentials and the SDK client in storage_firewall

Usage:
    from azure_mock import MockFirewall

    firewall = MockFirewall(rules={"198.51.100.1"})
    result = Reconciler(firewall, config).reconcile(desired)
    assert firewall.rules == {...}
"""

from .context import MockAzureContext, mock_azure_context
from .credential import MockCredential, create_mock_credential
from .firewall import MockFirewall, MockFirewallCall
from .storage import (
    MockEndpoints,
    MockStorageAccount,
    MockStorageManagementClient,
    make_account,
)

__all__ = [
    "MockAzureContext",
    "MockCredential",
    "MockEndpoints",
    "MockFirewall",
    "MockFirewallCall",
    "MockStorageAccount",
    "MockStorageManagementClient",
    "create_mock_credential",
    "make_account",
    "mock_azure_context",
]
