"""Configuration management with validation.

Configuration is an explicit, immutable value passed into each component.
All inputs are validated at construction time so a bad account name or
subscription ID fails before any Azure call is made.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class ReconciliationMode(str, Enum):
    """How desired state is applied to the remote allow-list."""

    # Only add missing entries, never remove
    MERGE = "merge"
    # Make remote state exactly equal to desired state
    REPLACE = "replace"


class FirewallBackendType(str, Enum):
    """Supported ways of talking to the storage firewall."""

    CLI = "cli"
    SDK = "sdk"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_IP_ECHO_TIMEOUT_SECONDS = 10
MIN_IP_ECHO_TIMEOUT_SECONDS = 1
MAX_IP_ECHO_TIMEOUT_SECONDS = 60

MAX_ALLOW_LIST_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max desired-state file
MAX_FEATURE_FLAGS_FILE_SIZE_BYTES = 64 * 1024

MAX_RESOURCE_GROUP_NAME_LENGTH = 90

# Input validation patterns
VALID_STORAGE_ACCOUNT_PATTERN = r"^[a-z0-9]{3,24}$"
VALID_RESOURCE_GROUP_PATTERN = r"^[-\w\.\(\)]{1,90}$"
VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"


@dataclass(frozen=True)
class ResourceNames:
    """Resource names derived from the provisioning naming convention.

    The provisioning scripts name everything from four parts:
    ``rg-<workload>-<environment>-<location>-<instance>`` for the resource
    group and ``<workload><environment><location><instance>`` for the
    storage account (storage account names cannot contain dashes).
    """

    workload: str
    environment: str
    location: str
    instance: str

    @classmethod
    def from_parts(
        cls, workload: str, environment: str, location: str, instance: str
    ) -> ResourceNames:
        return cls(
            workload=workload.strip().lower(),
            environment=environment.strip().lower(),
            location=location.strip().lower(),
            instance=instance.strip().lower(),
        )

    @property
    def resource_group(self) -> str:
        return f"rg-{self.workload}-{self.environment}-{self.location}-{self.instance}"

    @property
    def storage_account(self) -> str:
        return f"{self.workload}{self.environment}{self.location}{self.instance}"


@dataclass(frozen=True)
class Config:
    """Reconciler configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Target
    storage_account: str
    resource_group: str
    subscription_id: str | None = None

    # Backend selection
    backend: FirewallBackendType = FirewallBackendType.CLI
    managed_identity_client_id: str | None = None

    # Behavior
    mode: ReconciliationMode = ReconciliationMode.MERGE
    backup_enabled: bool = True
    backup_dir: Path = field(default_factory=Path.cwd)
    dry_run: bool = False
    configure_network_access: bool = True

    # Public IP detection
    ip_echo_timeout_seconds: int = DEFAULT_IP_ECHO_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.storage_account:
            errors.append("STORAGE_ACCOUNT_NAME is required")
        elif not re.match(VALID_STORAGE_ACCOUNT_PATTERN, self.storage_account):
            errors.append(
                "STORAGE_ACCOUNT_NAME must be 3-24 lowercase letters and digits: "
                f"{self.storage_account}"
            )

        if not self.resource_group:
            errors.append("RESOURCE_GROUP_NAME is required")
        elif len(self.resource_group) > MAX_RESOURCE_GROUP_NAME_LENGTH:
            errors.append(
                f"RESOURCE_GROUP_NAME exceeds maximum length of {MAX_RESOURCE_GROUP_NAME_LENGTH}"
            )
        elif not re.match(VALID_RESOURCE_GROUP_PATTERN, self.resource_group) or (
            self.resource_group.endswith(".")
        ):
            errors.append(
                f"RESOURCE_GROUP_NAME is not a valid resource group name: {self.resource_group}"
            )

        if self.subscription_id and not re.match(
            VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()
        ):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        # The SDK backend has no ambient "current subscription" to fall back on
        if self.backend == FirewallBackendType.SDK and not self.subscription_id:
            errors.append("AZURE_SUBSCRIPTION_ID is required when FIREWALL_BACKEND is sdk")

        if not (
            MIN_IP_ECHO_TIMEOUT_SECONDS
            <= self.ip_echo_timeout_seconds
            <= MAX_IP_ECHO_TIMEOUT_SECONDS
        ):
            errors.append(
                f"IP_ECHO_TIMEOUT must be between {MIN_IP_ECHO_TIMEOUT_SECONDS} "
                f"and {MAX_IP_ECHO_TIMEOUT_SECONDS} seconds"
            )

        if self.backup_enabled and not self.backup_dir.is_dir():
            errors.append(f"Backup directory does not exist: {self.backup_dir}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables.

        Keyword overrides (typically command-line options) take precedence
        over the environment; overrides that are None are ignored.

        Environment Variables:
            STORAGE_ACCOUNT_NAME: Target storage account
            RESOURCE_GROUP_NAME: Resource group of the storage account
            WORKLOAD, ENVIRONMENT, AZURE_LOCATION, INSTANCE: Naming parts used
                to derive the two names above when they are not set
            AZURE_SUBSCRIPTION_ID: Subscription to select (required for sdk)
            FIREWALL_BACKEND: cli or sdk (default: cli)
            AZURE_MANAGED_IDENTITY_CLIENT_ID: User-assigned identity for sdk
            RECONCILE_MODE: merge or replace (default: merge)
            BACKUP_ENABLED: Write a backup before mutating (default: true)
            BACKUP_DIR: Directory for backups (default: current directory)
            DRY_RUN: If "true", plan without applying (default: false)
            CONFIGURE_NETWORK_ACCESS: Enable public access and set the default
                action to Deny before adding rules (default: true)
            IP_ECHO_TIMEOUT: Per-service timeout for IP detection (default: 10)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_enum(key: str, enum_cls: type[Enum], default: Enum) -> Any:
            value = os.environ.get(key)
            if not value:
                return default
            try:
                return enum_cls(value.lower())
            except ValueError as e:
                valid = [m.value for m in enum_cls]
                raise ConfigurationError(f"{key} must be one of {valid}: {value}") from e

        values: dict[str, Any] = {
            "storage_account": os.environ.get("STORAGE_ACCOUNT_NAME", ""),
            "resource_group": os.environ.get("RESOURCE_GROUP_NAME", ""),
            "subscription_id": os.environ.get("AZURE_SUBSCRIPTION_ID") or None,
            "backend": get_enum("FIREWALL_BACKEND", FirewallBackendType, FirewallBackendType.CLI),
            "managed_identity_client_id": (
                os.environ.get("AZURE_MANAGED_IDENTITY_CLIENT_ID") or None
            ),
            "mode": get_enum("RECONCILE_MODE", ReconciliationMode, ReconciliationMode.MERGE),
            "backup_enabled": get_bool("BACKUP_ENABLED", True),
            "backup_dir": Path(os.environ.get("BACKUP_DIR", ".")).resolve(),
            "dry_run": get_bool("DRY_RUN", False),
            "configure_network_access": get_bool("CONFIGURE_NETWORK_ACCESS", True),
            "ip_echo_timeout_seconds": get_int("IP_ECHO_TIMEOUT", DEFAULT_IP_ECHO_TIMEOUT_SECONDS),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})

        if not values["storage_account"] or not values["resource_group"]:
            names = _names_from_env()
            if names is not None:
                values["storage_account"] = values["storage_account"] or names.storage_account
                values["resource_group"] = values["resource_group"] or names.resource_group

        return cls(**values)


def _names_from_env() -> ResourceNames | None:
    keys = ("WORKLOAD", "ENVIRONMENT", "AZURE_LOCATION", "INSTANCE")
    parts = [os.environ.get(key, "") for key in keys]
    if not all(parts):
        return None
    return ResourceNames.from_parts(*parts)
