"""Firewall backend using the Azure SDK for Python.

Same contract as AzCliFirewall, implemented with StorageManagementClient.
The storage firewall has no per-rule API: every mutation reads the current
network rule set, edits it and writes the whole set back.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from azure.core.exceptions import AzureError, ClientAuthenticationError, ResourceNotFoundError
from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.storage.models import IPRule, StorageAccountUpdateParameters

from .firewall import (
    NetworkAccessConfig,
    NetworkAccessUpdateFailed,
    PrerequisiteError,
    RemoteFetchFailed,
    RuleMutationFailed,
)
from .security import get_credential

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

IP_RULE_ACTION_ALLOW = "Allow"


class StorageSdkFirewall:
    """Firewall backend over ``azure-mgmt-storage``."""

    def __init__(self, client: Any, account: str, resource_group: str) -> None:
        self._client = client
        self.account = account
        self.resource_group = resource_group

    @classmethod
    def from_config(cls, config: Config) -> StorageSdkFirewall:
        """Create a backend with a secretless credential.

        Raises:
            SecretlessViolationError: If credential secrets are in the environment.
        """
        credential = get_credential(config.managed_identity_client_id)
        client = StorageManagementClient(
            credential=credential,
            subscription_id=config.subscription_id,
        )
        return cls(client, config.storage_account, config.resource_group)

    def _get_account(self) -> Any:
        return self._client.storage_accounts.get_properties(self.resource_group, self.account)

    def _update(self, parameters: StorageAccountUpdateParameters) -> None:
        self._client.storage_accounts.update(self.resource_group, self.account, parameters)

    def check_prerequisites(self) -> None:
        try:
            account = self._get_account()
        except ResourceNotFoundError as e:
            raise PrerequisiteError(
                f"Storage account '{self.account}' not found in resource group "
                f"'{self.resource_group}'"
            ) from e
        except ClientAuthenticationError as e:
            raise PrerequisiteError(
                f"Azure authentication failed: {e.message}. Run 'az login'."
            ) from e
        except AzureError as e:
            raise PrerequisiteError(f"Cannot reach storage account '{self.account}': {e}") from e

        logger.info("Storage account verified", extra={"account_id": getattr(account, "id", None)})

    def list_ip_rules(self) -> list[str]:
        try:
            account = self._get_account()
        except AzureError as e:
            raise RemoteFetchFailed(
                f"Failed to list IP rules for storage account '{self.account}': {e}"
            ) from e
        rule_set = account.network_rule_set
        if rule_set is None or not rule_set.ip_rules:
            return []
        return [rule.ip_address_or_range for rule in rule_set.ip_rules if rule.ip_address_or_range]

    def _rewrite_ip_rules(self, address: str, operation: str, *, present: bool) -> None:
        try:
            account = self._get_account()
            rule_set = account.network_rule_set
            if rule_set is None:
                raise RuleMutationFailed(address, operation, "account has no network rule set")

            rules = [r for r in (rule_set.ip_rules or []) if r.ip_address_or_range != address]
            if present:
                rules.append(IPRule(ip_address_or_range=address, action=IP_RULE_ACTION_ALLOW))
            rule_set.ip_rules = rules

            self._update(StorageAccountUpdateParameters(network_rule_set=rule_set))
        except AzureError as e:
            raise RuleMutationFailed(address, operation, str(e)) from e

    def add_ip_rule(self, address: str) -> None:
        self._rewrite_ip_rules(address, "add", present=True)

    def remove_ip_rule(self, address: str) -> None:
        self._rewrite_ip_rules(address, "remove", present=False)

    def get_network_access(self) -> NetworkAccessConfig:
        try:
            account = self._get_account()
        except AzureError as e:
            raise RemoteFetchFailed(
                f"Failed to read network access for storage account '{self.account}': {e}"
            ) from e
        rule_set = account.network_rule_set
        return NetworkAccessConfig(
            public_access=_enum_value(account.public_network_access),
            default_action=_enum_value(rule_set.default_action) if rule_set else None,
        )

    def set_network_access(
        self, *, public_access: str | None = None, default_action: str | None = None
    ) -> None:
        if public_access is None and default_action is None:
            return
        try:
            parameters = StorageAccountUpdateParameters()
            if public_access is not None:
                parameters.public_network_access = public_access
            if default_action is not None:
                rule_set = self._get_account().network_rule_set
                rule_set.default_action = default_action
                parameters.network_rule_set = rule_set
            self._update(parameters)
        except AzureError as e:
            raise NetworkAccessUpdateFailed(
                f"Failed to update network access for storage account '{self.account}': {e}"
            ) from e

    def get_blob_endpoint(self) -> str:
        try:
            account = self._get_account()
        except AzureError as e:
            raise RemoteFetchFailed(
                f"Failed to read blob endpoint for storage account '{self.account}': {e}"
            ) from e
        endpoints = account.primary_endpoints
        if endpoints is None or not endpoints.blob:
            raise RemoteFetchFailed(f"Storage account '{self.account}' has no blob endpoint")
        return endpoints.blob


def _enum_value(value: Any) -> str | None:
    # SDK models return str-based enums or plain strings depending on version
    if value is None:
        return None
    return getattr(value, "value", value)
