"""Credential selection for the Azure SDK backend.

The SDK backend never authenticates with a stored secret. It uses either a
user-assigned managed identity (when a client ID is configured, e.g. on a
build agent) or the operator's existing ``az login`` session.

SECURITY INVARIANTS:
1. AZURE_CLIENT_SECRET and other secret-bearing variables must not be set
2. Only ManagedIdentityCredential or AzureCliCredential are handed out
"""

from __future__ import annotations

import logging
import os

from azure.core.credentials import TokenCredential
from azure.identity import AzureCliCredential, ManagedIdentityCredential

logger = logging.getLogger(__name__)

# Environment variables that indicate credential leakage
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)

SECRETLESS_VIOLATION_MESSAGE = (
    "SECURITY VIOLATION: {env_var} is set. Secret-based authentication is not "
    "allowed; unset it and use 'az login' or a managed identity instead."
)


class SecretlessViolationError(Exception):
    """Raised when a secret-bearing credential variable is present."""

    pass


def enforce_secretless_architecture() -> None:
    """Refuse to run with credential secrets in the environment.

    Raises:
        SecretlessViolationError: If any forbidden variable is set.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Secretless architecture violation",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "startup_blocked",
                },
            )
            raise SecretlessViolationError(SECRETLESS_VIOLATION_MESSAGE.format(env_var=env_var))


def get_credential(client_id: str | None = None) -> TokenCredential:
    """Return a credential after verifying no secrets are configured.

    Args:
        client_id: Client ID of a user-assigned managed identity. When None,
            the Azure CLI login session is used.

    Raises:
        SecretlessViolationError: If credential environment variables detected.
    """
    enforce_secretless_architecture()

    if client_id:
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": client_id[:8] + "..." if len(client_id) > 8 else client_id},
        )
        return ManagedIdentityCredential(client_id=client_id)

    logger.info("Using Azure CLI credential")
    return AzureCliCredential()
