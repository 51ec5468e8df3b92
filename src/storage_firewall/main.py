"""Run functions behind the ``stgfw`` commands.

Each function takes a validated Config, does one job, prints a summary for
the operator and returns the process exit code:

    0  everything succeeded
    1  the run failed or some rule changes failed
    2  configuration, prerequisite or security problem (nothing was changed)
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

import click

from .addresses import (
    DesiredStateLoadError,
    EmptyDesiredState,
    IPv4Address,
    ParseResult,
    load_allow_list,
    require_addresses,
    sort_addresses,
)
from .config import Config, ConfigurationError, ReconciliationMode
from .dns_check import DnsLookupFailed, inspect_endpoint
from .feature_flags import (
    ConfigFlagNotFound,
    FeatureFlagsLoadError,
    is_yaml_path,
    toggle_feature_flag,
    toggle_shell_flag_file,
)
from .firewall import FirewallError, PrerequisiteError, create_backend
from .public_ip import IPDetectionFailed, detect_public_ip
from .reconciler import Reconciler, ReconcileResult
from .security import SecretlessViolationError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PREREQUISITE = 2

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_LOG_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(json_output: bool = False, verbose: bool = False) -> None:
    """Configure logging on stderr, keeping stdout for command output."""
    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logging.getLogger("storage_firewall").setLevel(logging.DEBUG if verbose else logging.INFO)

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _error(message: str) -> None:
    click.secho(f"✗ {message}", fg="red", err=True)


class _RunAborted(Exception):
    def __init__(self, exit_code: int) -> None:
        self.exit_code = exit_code
        super().__init__(exit_code)


@contextmanager
def _fatal_errors() -> Iterator[None]:
    """Map fatal failures to exit codes with a clear message."""
    try:
        yield
    except SecretlessViolationError as e:
        logger.critical("Security violation: credentials detected in environment")
        _error(str(e))
        raise _RunAborted(EXIT_PREREQUISITE) from e
    except (ConfigurationError, PrerequisiteError) as e:
        logger.error("Prerequisite check failed", extra={"error": str(e)})
        _error(str(e))
        raise _RunAborted(EXIT_PREREQUISITE) from e
    except FirewallError as e:
        logger.error("Firewall operation failed", extra={"error": str(e)})
        _error(str(e))
        raise _RunAborted(EXIT_FAILURE) from e


def _connect(config: Config) -> Reconciler:
    backend = create_backend(config)
    backend.check_prerequisites()
    return Reconciler(backend, config)


def report_rejected(result: ParseResult) -> None:
    for rejected in result.rejected:
        click.secho(f"⚠ Skipping {rejected}", fg="yellow", err=True)


def _format_addresses(addresses: frozenset[IPv4Address] | None) -> list[str]:
    if not addresses:
        return ["  (none)"]
    return [f"  • {address}" for address in sort_addresses(addresses)]


def print_summary(result: ReconcileResult) -> None:
    """Print the outcome of a reconciliation run."""
    plan = result.plan
    click.echo("")
    click.secho("Summary", bold=True)
    click.echo(f"  Storage account: {result.account}")
    click.echo(f"  Mode:            {plan.mode.value}{' (dry run)' if result.dry_run else ''}")

    if result.dry_run:
        click.echo(f"  Would remove:    {', '.join(map(str, plan.removals)) or '-'}")
        click.echo(f"  Would add:       {', '.join(map(str, plan.additions)) or '-'}")
        click.echo(f"  Already present: {result.already_present}")
    else:
        click.echo(f"  Added:           {result.added}")
        click.echo(f"  Removed:         {result.removed}")
        click.echo(f"  Already present: {result.already_present}")
        click.echo(f"  Failed:          {result.failed}")

    for failure in result.failures:
        _error(f"{failure.operation.value} {failure.address}: {failure.error}")

    if result.backup_path is not None:
        click.echo(f"  Backup:          {result.backup_path}")
    elif result.backup_error:
        click.secho(f"⚠ Backup not written: {result.backup_error}", fg="yellow", err=True)

    if result.final_state_error:
        _error(f"Could not re-read allow-list: {result.final_state_error}")
    else:
        click.echo("")
        label = "Current allow-list" if result.dry_run else "Allow-list after changes"
        click.echo(f"{label}:")
        for line in _format_addresses(result.final_state):
            click.echo(line)

    if result.success:
        click.secho("✓ Reconciliation complete", fg="green")
    elif result.failed:
        _error(f"{result.failed} rule change(s) failed")


def _reconcile(
    config: Config,
    desired: frozenset[IPv4Address] | None,
    mode: ReconciliationMode | None = None,
) -> int:
    try:
        with _fatal_errors():
            reconciler = _connect(config)
            if config.configure_network_access and desired is not None:
                for change in reconciler.ensure_network_access():
                    click.echo(f"🛡 Network access: {change}")
            if desired is None:
                result = reconciler.wipe()
            else:
                result = reconciler.reconcile(desired, mode=mode)
    except _RunAborted as e:
        return e.exit_code

    print_summary(result)
    return result.exit_code


def sync_from_file(config: Config, path: Path) -> int:
    """Reconcile the firewall against an allow-list file."""
    try:
        parsed = load_allow_list(path)
    except DesiredStateLoadError as e:
        logger.error("Failed to load allow-list", extra={"error": str(e)})
        _error(str(e))
        return EXIT_PREREQUISITE

    report_rejected(parsed)
    try:
        desired = require_addresses(parsed)
    except EmptyDesiredState as e:
        logger.error("Empty desired state", extra={"path": str(path)})
        _error(f"{e}. Use 'stgfw wipe' to remove every rule.")
        return EXIT_FAILURE

    click.echo(f"📋 {len(desired)} address(es) in {path}")
    return _reconcile(config, desired)


def add_public_ip(config: Config) -> int:
    """Merge the caller's current public IP into the allow-list."""
    try:
        address = detect_public_ip(timeout=config.ip_echo_timeout_seconds)
    except IPDetectionFailed as e:
        logger.error("Public IP detection failed", extra={"attempts": e.attempts})
        _error(str(e))
        return EXIT_FAILURE

    click.echo(f"🌐 Your public IP address: {address}")
    return _reconcile(config, frozenset({address}), mode=ReconciliationMode.MERGE)


def wipe_rules(config: Config) -> int:
    """Remove every IP rule from the firewall."""
    return _reconcile(config, None)


def show_firewall(config: Config) -> int:
    """Print network access settings and the current allow-list."""
    try:
        with _fatal_errors():
            reconciler = _connect(config)
            access = reconciler.backend.get_network_access()
            addresses = reconciler.fetch_remote_state()
    except _RunAborted as e:
        return e.exit_code

    click.echo(f"🏪 Storage account: {config.storage_account}")
    click.echo(f"📁 Resource group:  {config.resource_group}")
    click.echo(f"   Public network access: {access.public_access or 'unknown'}")
    click.echo(f"   Default action:        {access.default_action or 'unknown'}")
    if not access.allows_selected_networks:
        click.secho(
            "⚠ IP rules have no effect unless public access is enabled and the "
            "default action is Deny",
            fg="yellow",
        )
    click.echo("🎯 Allowed IP addresses:")
    for line in _format_addresses(addresses):
        click.echo(line)
    return EXIT_OK


def validate_file(path: Path) -> int:
    """Parse an allow-list file without contacting Azure."""
    try:
        parsed = load_allow_list(path)
    except DesiredStateLoadError as e:
        _error(str(e))
        return EXIT_PREREQUISITE

    report_rejected(parsed)
    for address in parsed.sorted_addresses:
        click.echo(str(address))
    click.echo(f"{len(parsed.addresses)} valid, {len(parsed.rejected)} rejected", err=True)
    if parsed.is_empty:
        _error("No valid addresses")
        return EXIT_FAILURE
    return EXIT_OK if not parsed.rejected else EXIT_FAILURE


def toggle_flag(path: Path, name: str) -> int:
    """Flip a feature flag in a YAML flags file or a provisioning script."""
    try:
        if is_yaml_path(path):
            new_value = toggle_feature_flag(path, name)
        else:
            new_value = toggle_shell_flag_file(path, name)
    except (ConfigFlagNotFound, FeatureFlagsLoadError) as e:
        logger.error("Feature flag toggle failed", extra={"error": str(e)})
        _error(str(e))
        return EXIT_FAILURE

    state = "ENABLED" if new_value else "DISABLED"
    click.secho(f"✓ {name} {state}", fg="green")
    return EXIT_OK


def check_dns(config: Config) -> int:
    """Resolve the blob endpoint and report whether it goes via Private Link."""
    try:
        with _fatal_errors():
            backend = create_backend(config)
            backend.check_prerequisites()
            endpoint = backend.get_blob_endpoint()
    except _RunAborted as e:
        return e.exit_code

    try:
        resolution = inspect_endpoint(endpoint)
    except (DnsLookupFailed, ValueError) as e:
        _error(str(e))
        return EXIT_FAILURE

    click.echo(f"🌐 Blob endpoint:  {endpoint}")
    click.echo(f"🖥 Hostname:       {resolution.hostname}")
    click.echo(f"🎯 Canonical name: {resolution.canonical_name}")
    for alias in resolution.aliases:
        click.echo(f"   alias: {alias}")
    for address in resolution.addresses:
        click.echo(f"   address: {address}")
    if resolution.resolves_privately:
        click.secho("✓ Resolves to a private address (private endpoint)", fg="green")
    else:
        click.secho("⚠ Resolves to a public address", fg="yellow")
        if resolution.uses_private_link:
            click.echo("   Private Link alias present: check the private DNS zone link")
    return EXIT_OK

