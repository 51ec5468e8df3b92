"""Allow-list reconciliation against the storage firewall.

A reconciliation run:
1. Fetches the current remote allow-list (never cached between runs)
2. Plans additions and, in replace mode, removals
3. Writes a backup of the remote state before any mutation
4. Issues every removal before any addition, each in sorted order
5. Re-fetches the remote allow-list so the summary reports ground truth

Removing first means the allow-list is briefly narrower than both the old
and the new state, never wider. Individual rule failures are recorded and
the batch continues.

Runs are not serialized: two concurrent runs against the same account can
interleave their rule changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from .addresses import EmptyDesiredState, IPv4Address, parse_remote_rules, sort_addresses
from .backup import BackupWriteFailed, write_backup
from .config import Config, ReconciliationMode
from .firewall import (
    DEFAULT_ACTION_ALLOW,
    DEFAULT_ACTION_DENY,
    PUBLIC_ACCESS_DISABLED,
    PUBLIC_ACCESS_ENABLED,
    FirewallBackend,
    RemoteFetchFailed,
    RuleMutationFailed,
)

logger = logging.getLogger(__name__)


class RuleOperation(str, Enum):
    """Mutations issued against the firewall."""

    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class ReconciliationPlan:
    """Changes needed to move the remote allow-list to the desired state."""

    mode: ReconciliationMode
    additions: tuple[IPv4Address, ...] = ()
    removals: tuple[IPv4Address, ...] = ()
    unchanged: tuple[IPv4Address, ...] = ()

    @property
    def is_noop(self) -> bool:
        return not self.additions and not self.removals


def build_plan(
    desired: frozenset[IPv4Address],
    remote: frozenset[IPv4Address],
    mode: ReconciliationMode,
) -> ReconciliationPlan:
    """Compute the plan for a reconciliation.

    Merge mode never removes an existing rule. Replace mode removes every
    remote address missing from the desired state.
    """
    removals = remote - desired if mode == ReconciliationMode.REPLACE else frozenset()
    return ReconciliationPlan(
        mode=mode,
        additions=tuple(sort_addresses(desired - remote)),
        removals=tuple(sort_addresses(removals)),
        unchanged=tuple(sort_addresses(desired & remote)),
    )


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a single add or remove call."""

    address: IPv4Address
    operation: RuleOperation
    success: bool
    error: str | None = None


@dataclass
class ReconcileResult:
    """Result of a single reconciliation run."""

    account: str
    plan: ReconciliationPlan
    dry_run: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    operations: list[OperationResult] = field(default_factory=list)
    backup_path: Path | None = None
    backup_error: str | None = None
    final_state: frozenset[IPv4Address] | None = None
    final_state_error: str | None = None

    def _count(self, operation: RuleOperation, success: bool) -> int:
        return sum(
            1 for op in self.operations if op.operation == operation and op.success is success
        )

    @property
    def added(self) -> int:
        return self._count(RuleOperation.ADD, True)

    @property
    def removed(self) -> int:
        return self._count(RuleOperation.REMOVE, True)

    @property
    def already_present(self) -> int:
        return len(self.plan.unchanged)

    @property
    def failed(self) -> int:
        return sum(1 for op in self.operations if not op.success)

    @property
    def failures(self) -> list[OperationResult]:
        return [op for op in self.operations if not op.success]

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """True when every rule change succeeded and the final state was read."""
        return self.failed == 0 and self.final_state_error is None

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1


class Reconciler:
    """Converges a storage firewall allow-list to a desired state."""

    def __init__(self, backend: FirewallBackend, config: Config) -> None:
        self._backend = backend
        self._config = config

    @property
    def backend(self) -> FirewallBackend:
        return self._backend

    def fetch_remote_state(self) -> frozenset[IPv4Address]:
        """Read the current allow-list from the firewall.

        Raises:
            RemoteFetchFailed: If the listing call failed.
        """
        return parse_remote_rules(self._backend.list_ip_rules())

    def reconcile(
        self,
        desired: frozenset[IPv4Address],
        mode: ReconciliationMode | None = None,
        backup: bool | None = None,
    ) -> ReconcileResult:
        """Apply the desired allow-list.

        Args:
            desired: Validated desired addresses; must not be empty.
            mode: Overrides the configured mode.
            backup: Overrides the configured backup flag.

        Raises:
            EmptyDesiredState: If desired is empty. Removing every rule is
                only possible through wipe().
            RemoteFetchFailed: If the initial remote state could not be read.
        """
        if not desired:
            raise EmptyDesiredState("Refusing to reconcile against an empty desired state")

        return self._run(
            desired,
            mode if mode is not None else self._config.mode,
            backup if backup is not None else self._config.backup_enabled,
        )

    def wipe(self, backup: bool | None = None) -> ReconcileResult:
        """Remove every IP rule from the firewall.

        With a Deny default action this locks out all public sources.
        """
        logger.warning("Removing all IP rules", extra={"account": self._backend.account})
        return self._run(
            frozenset(),
            ReconciliationMode.REPLACE,
            backup if backup is not None else self._config.backup_enabled,
        )

    def _run(
        self,
        desired: frozenset[IPv4Address],
        mode: ReconciliationMode,
        backup: bool,
    ) -> ReconcileResult:
        remote = self.fetch_remote_state()
        plan = build_plan(desired, remote, mode)
        result = ReconcileResult(
            account=self._backend.account, plan=plan, dry_run=self._config.dry_run
        )

        logger.info(
            "Reconciliation planned",
            extra={
                "account": self._backend.account,
                "mode": mode.value,
                "remote_count": len(remote),
                "desired_count": len(desired),
                "additions": len(plan.additions),
                "removals": len(plan.removals),
                "unchanged": len(plan.unchanged),
            },
        )

        if self._config.dry_run:
            result.final_state = remote
            result.end_time = datetime.now(UTC)
            logger.info("Dry run - no changes applied")
            return result

        if backup and remote:
            try:
                result.backup_path = write_backup(
                    self._backend.account, remote, self._config.backup_dir
                )
            except BackupWriteFailed as e:
                result.backup_error = str(e)
                logger.warning("Backup failed, continuing", extra={"error": str(e)})

        for address in plan.removals:
            result.operations.append(self._apply(RuleOperation.REMOVE, address))
        for address in plan.additions:
            result.operations.append(self._apply(RuleOperation.ADD, address))

        try:
            result.final_state = self.fetch_remote_state()
        except RemoteFetchFailed as e:
            result.final_state_error = str(e)
            logger.error("Could not re-read firewall state", extra={"error": str(e)})

        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    def _apply(self, operation: RuleOperation, address: IPv4Address) -> OperationResult:
        try:
            if operation == RuleOperation.ADD:
                self._backend.add_ip_rule(str(address))
            else:
                self._backend.remove_ip_rule(str(address))
        except RuleMutationFailed as e:
            logger.error(
                "IP rule change failed",
                extra={"operation": operation.value, "ip": str(address), "error": e.cause},
            )
            return OperationResult(address, operation, success=False, error=e.cause)

        logger.info("IP rule changed", extra={"operation": operation.value, "ip": str(address)})
        return OperationResult(address, operation, success=True)

    def ensure_network_access(self) -> list[str]:
        """Make the account reachable from allow-listed public IPs only.

        IP rules only take effect when public network access is enabled and
        the default action is Deny.

        Returns:
            Human-readable descriptions of the changes made (empty if none).

        Raises:
            RemoteFetchFailed: If the current settings could not be read.
            NetworkAccessUpdateFailed: If a change could not be applied.
        """
        current = self._backend.get_network_access()
        changes: list[str] = []

        public_access = None
        if current.public_access == PUBLIC_ACCESS_DISABLED:
            public_access = PUBLIC_ACCESS_ENABLED
            changes.append("enabled public network access")

        default_action = None
        if current.default_action == DEFAULT_ACTION_ALLOW:
            default_action = DEFAULT_ACTION_DENY
            changes.append("set default action to Deny")

        if not changes:
            return changes

        if self._config.dry_run:
            logger.info("Dry run - network access unchanged", extra={"pending": changes})
            return [f"would have {change}" for change in changes]

        self._backend.set_network_access(
            public_access=public_access, default_action=default_action
        )
        logger.info("Network access updated", extra={"changes": changes})
        return changes

    def _log_result(self, result: ReconcileResult) -> None:
        extra = {
            "account": result.account,
            "mode": result.plan.mode.value,
            "added": result.added,
            "removed": result.removed,
            "already_present": result.already_present,
            "failed": result.failed,
            "duration_seconds": result.duration_seconds,
        }
        if result.success:
            logger.info("Reconciliation completed", extra=extra)
        else:
            logger.error("Reconciliation completed with failures", extra=extra)
