"""Storage account firewall backends.

The reconciler talks to the firewall only through the FirewallBackend
protocol. The default backend shells out to the Azure CLI (``az``); the SDK
backend in storage_client.py offers the same contract over the Azure SDK.

Every call is synchronous. Firewall commands carry no explicit timeout and
inherit whatever the Azure CLI does.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

AZ_INSTALL_URL = "https://learn.microsoft.com/cli/azure/install-azure-cli"

PUBLIC_ACCESS_ENABLED = "Enabled"
PUBLIC_ACCESS_DISABLED = "Disabled"
DEFAULT_ACTION_ALLOW = "Allow"
DEFAULT_ACTION_DENY = "Deny"


class FirewallError(Exception):
    """Base class for firewall backend failures."""

    pass


class PrerequisiteError(FirewallError):
    """Raised when the environment cannot reach the target at all.

    Missing tooling, no login session, or a storage account that does not
    exist. Always fatal.
    """

    pass


class RemoteFetchFailed(FirewallError):
    """Raised when the current firewall state could not be read.

    Callers must not treat this as an empty allow-list.
    """

    pass


class RuleMutationFailed(FirewallError):
    """Raised when adding or removing a single IP rule failed."""

    def __init__(self, address: str, operation: str, cause: str) -> None:
        self.address = address
        self.operation = operation
        self.cause = cause
        super().__init__(f"Failed to {operation} IP rule {address}: {cause}")


class NetworkAccessUpdateFailed(FirewallError):
    """Raised when public access or the default action could not be changed."""

    pass


@dataclass(frozen=True)
class NetworkAccessConfig:
    """Public network access settings of a storage account."""

    public_access: str | None
    default_action: str | None

    @property
    def allows_selected_networks(self) -> bool:
        """True when only allow-listed sources can reach the account."""
        return (
            self.public_access != PUBLIC_ACCESS_DISABLED
            and self.default_action == DEFAULT_ACTION_DENY
        )


class FirewallBackend(Protocol):
    """Operations the reconciler needs from a storage firewall."""

    account: str
    resource_group: str

    def check_prerequisites(self) -> None: ...

    def list_ip_rules(self) -> list[str]: ...

    def add_ip_rule(self, address: str) -> None: ...

    def remove_ip_rule(self, address: str) -> None: ...

    def get_network_access(self) -> NetworkAccessConfig: ...

    def set_network_access(
        self, *, public_access: str | None = None, default_action: str | None = None
    ) -> None: ...

    def get_blob_endpoint(self) -> str: ...


class AzCommandError(Exception):
    """An ``az`` invocation exited non-zero."""

    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(self.stderr or f"az exited with code {returncode}")


def parse_az_json(stdout: str) -> Any:
    """Parse ``az --output json`` output.

    The Azure CLI sometimes prints warnings before the JSON payload; those
    leading lines are skipped.
    """
    text = stdout.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        lines = text.splitlines()
        for i, line in enumerate(lines):
            if line.strip().startswith(("{", "[", '"')):
                return json.loads("\n".join(lines[i:]))
        raise


class AzCliFirewall:
    """Firewall backend driving the Azure CLI.

    When a subscription is configured it is passed explicitly with
    ``--subscription`` on every call instead of switching the CLI's
    active subscription.
    """

    def __init__(
        self,
        account: str,
        resource_group: str,
        subscription_id: str | None = None,
        az_path: str = "az",
    ) -> None:
        self.account = account
        self.resource_group = resource_group
        self._subscription_id = subscription_id
        self._az_path = az_path

    def _run(self, args: list[str], *, output: str = "json") -> Any:
        cmd = [self._az_path, *args]
        if self._subscription_id:
            cmd.extend(["--subscription", self._subscription_id])
        cmd.extend(["--output", output])

        logger.debug("Running Azure CLI", extra={"az_args": args})
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except FileNotFoundError as e:
            raise PrerequisiteError(
                f"Azure CLI ({self._az_path}) not found. Install from {AZ_INSTALL_URL}"
            ) from e

        if result.returncode != 0:
            raise AzCommandError(args, result.returncode, result.stderr or "")

        if output != "json":
            return None
        try:
            return parse_az_json(result.stdout)
        except json.JSONDecodeError as e:
            raise AzCommandError(
                args, result.returncode, f"Unparseable output: {result.stdout[:200]}"
            ) from e

    def _account_args(self, *command: str) -> list[str]:
        return [
            "storage",
            "account",
            *command,
            "--name",
            self.account,
            "--resource-group",
            self.resource_group,
        ]

    def _rule_args(self, command: str) -> list[str]:
        return [
            "storage",
            "account",
            "network-rule",
            command,
            "--account-name",
            self.account,
            "--resource-group",
            self.resource_group,
        ]

    def check_prerequisites(self) -> None:
        """Verify az is installed, logged in, and the account exists.

        Raises:
            PrerequisiteError: On the first failed check.
        """
        if not shutil.which(self._az_path):
            raise PrerequisiteError(
                f"Azure CLI ({self._az_path}) not found. Install from {AZ_INSTALL_URL}"
            )

        try:
            account = self._run(["account", "show"])
        except AzCommandError as e:
            if self._subscription_id:
                raise PrerequisiteError(
                    f"Cannot use subscription {self._subscription_id}: {e}. "
                    "Check 'az login' and the subscription ID."
                ) from e
            raise PrerequisiteError(f"Not logged in to Azure CLI ({e}). Run 'az login'.") from e

        logger.info(
            "Azure CLI session verified",
            extra={"subscription_id": (account or {}).get("id")},
        )

        try:
            self._run([*self._account_args("show"), "--query", "name"])
        except AzCommandError as e:
            raise PrerequisiteError(
                f"Storage account '{self.account}' not found in resource group "
                f"'{self.resource_group}': {e}"
            ) from e

    def list_ip_rules(self) -> list[str]:
        try:
            rules = self._run([*self._rule_args("list"), "--query", "ipRules[].ipAddressOrRange"])
        except AzCommandError as e:
            raise RemoteFetchFailed(
                f"Failed to list IP rules for storage account '{self.account}': {e}"
            ) from e
        if rules is None:
            return []
        if not isinstance(rules, list):
            raise RemoteFetchFailed(f"Unexpected IP rule listing for '{self.account}': {rules!r}")
        return [str(rule) for rule in rules if rule]

    def add_ip_rule(self, address: str) -> None:
        try:
            self._run([*self._rule_args("add"), "--ip-address", address], output="none")
        except AzCommandError as e:
            raise RuleMutationFailed(address, "add", str(e)) from e

    def remove_ip_rule(self, address: str) -> None:
        try:
            self._run([*self._rule_args("remove"), "--ip-address", address], output="none")
        except AzCommandError as e:
            raise RuleMutationFailed(address, "remove", str(e)) from e

    def get_network_access(self) -> NetworkAccessConfig:
        query = "{publicAccess:publicNetworkAccess, defaultAction:networkRuleSet.defaultAction}"
        try:
            data = self._run([*self._account_args("show"), "--query", query])
        except AzCommandError as e:
            raise RemoteFetchFailed(
                f"Failed to read network access for storage account '{self.account}': {e}"
            ) from e
        data = data or {}
        return NetworkAccessConfig(
            public_access=data.get("publicAccess"),
            default_action=data.get("defaultAction"),
        )

    def set_network_access(
        self, *, public_access: str | None = None, default_action: str | None = None
    ) -> None:
        args = self._account_args("update")
        if public_access is not None:
            args.extend(["--public-network-access", public_access])
        if default_action is not None:
            args.extend(["--default-action", default_action])
        if public_access is None and default_action is None:
            return
        try:
            self._run(args, output="none")
        except AzCommandError as e:
            raise NetworkAccessUpdateFailed(
                f"Failed to update network access for storage account '{self.account}': {e}"
            ) from e

    def get_blob_endpoint(self) -> str:
        try:
            endpoint = self._run([*self._account_args("show"), "--query", "primaryEndpoints.blob"])
        except AzCommandError as e:
            raise RemoteFetchFailed(
                f"Failed to read blob endpoint for storage account '{self.account}': {e}"
            ) from e
        if not endpoint:
            raise RemoteFetchFailed(f"Storage account '{self.account}' has no blob endpoint")
        return str(endpoint)


def create_backend(config: Config) -> FirewallBackend:
    """Build the firewall backend selected in configuration."""
    from .config import FirewallBackendType

    if config.backend == FirewallBackendType.SDK:
        from .storage_client import StorageSdkFirewall

        return StorageSdkFirewall.from_config(config)

    return AzCliFirewall(
        account=config.storage_account,
        resource_group=config.resource_group,
        subscription_id=config.subscription_id,
    )
