"""Storage firewall CLI (stgfw).

Usage:
    stgfw sync allow-list.txt              # Merge addresses into the firewall
    stgfw sync allow-list.txt --mode replace
    stgfw add-my-ip                        # Allow your current public IP
    stgfw show                             # Show access settings and rules
    stgfw validate allow-list.txt          # Check a file without Azure
    stgfw wipe --yes                       # Remove every IP rule
    stgfw dns toggle setup.sh              # Flip ENABLE_PRIVATE_DNS
    stgfw dns check                        # Inspect blob endpoint resolution
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

import click

from . import main as runner
from .config import Config, ConfigurationError, FirewallBackendType, ReconciliationMode
from .feature_flags import DEFAULT_SHELL_FLAG

VERSION = "0.1.0"


class ConfigurationFailed(click.ClickException):
    """Invalid configuration; exits like other prerequisite failures."""

    exit_code = runner.EXIT_PREREQUISITE


def _build_config(ctx: click.Context, **overrides: Any) -> Config:
    """Merge group options, command options and the environment."""
    try:
        return Config.from_env(**ctx.obj, **overrides)
    except ConfigurationError as e:
        raise ConfigurationFailed(str(e)) from e


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=VERSION, prog_name="stgfw")
@click.option("--account", "-a", help="Storage account name [env: STORAGE_ACCOUNT_NAME]")
@click.option("--resource-group", "-g", help="Resource group [env: RESOURCE_GROUP_NAME]")
@click.option("--subscription", "-s", help="Subscription ID [env: AZURE_SUBSCRIPTION_ID]")
@click.option(
    "--backend",
    type=click.Choice([b.value for b in FirewallBackendType]),
    help="Firewall backend [env: FIREWALL_BACKEND]",
)
@click.option(
    "--log-format",
    type=click.Choice(["text", "json"]),
    default=lambda: os.environ.get("LOG_FORMAT", "text"),
    help="Log format on stderr [env: LOG_FORMAT]",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(
    ctx: click.Context,
    account: str | None,
    resource_group: str | None,
    subscription: str | None,
    backend: str | None,
    log_format: str,
    verbose: bool,
) -> None:
    """Storage firewall allow-list manager (stgfw).

    Converges the IP allow-list of an Azure Storage account firewall to a
    desired state. Target and behavior can also be set from the environment.

    \b
    Quick Start:
        az login
        stgfw -a mystorage -g rg-demo show
        stgfw -a mystorage -g rg-demo add-my-ip
    """
    runner.setup_logging(json_output=log_format == "json", verbose=verbose)
    ctx.obj = {
        "storage_account": account,
        "resource_group": resource_group,
        "subscription_id": subscription,
        "backend": FirewallBackendType(backend) if backend else None,
    }


def _behavior_options(func: Any) -> Any:
    """Options shared by every command that changes rules."""
    func = click.option(
        "--backup/--no-backup",
        default=None,
        help="Back up current rules before changing them (default: on)",
    )(func)
    func = click.option(
        "--backup-dir",
        type=click.Path(file_okay=False, path_type=Path),
        help="Directory for backups [env: BACKUP_DIR]",
    )(func)
    func = click.option(
        "--dry-run", is_flag=True, default=False, help="Plan only, change nothing"
    )(func)
    return func


def _access_option(func: Any) -> Any:
    return click.option(
        "--configure-access/--no-configure-access",
        default=None,
        help="Enable public access with default action Deny first (default: on)",
    )(func)


# =============================================================================
# Rule Commands
# =============================================================================


@cli.command()
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--mode",
    "-m",
    type=click.Choice([m.value for m in ReconciliationMode]),
    help="merge adds missing rules; replace also removes extra rules [env: RECONCILE_MODE]",
)
@_behavior_options
@_access_option
@click.pass_context
def sync(
    ctx: click.Context,
    file: Path,
    mode: str | None,
    backup: bool | None,
    backup_dir: Path | None,
    dry_run: bool,
    configure_access: bool | None,
) -> None:
    """Reconcile the firewall against an allow-list FILE.

    FILE holds one IPv4 address per line; blank lines and lines starting
    with # are ignored.
    """
    config = _build_config(
        ctx,
        mode=ReconciliationMode(mode) if mode else None,
        backup_enabled=backup,
        backup_dir=backup_dir.resolve() if backup_dir else None,
        dry_run=dry_run or None,
        configure_network_access=configure_access,
    )
    sys.exit(runner.sync_from_file(config, file))


@cli.command("add-my-ip")
@_behavior_options
@_access_option
@click.pass_context
def add_my_ip(
    ctx: click.Context,
    backup: bool | None,
    backup_dir: Path | None,
    dry_run: bool,
    configure_access: bool | None,
) -> None:
    """Allow your current public IP address (merge, never removes)."""
    config = _build_config(
        ctx,
        backup_enabled=backup,
        backup_dir=backup_dir.resolve() if backup_dir else None,
        dry_run=dry_run or None,
        configure_network_access=configure_access,
    )
    sys.exit(runner.add_public_ip(config))


@cli.command()
@click.option("--yes", is_flag=True, help="Confirm removal of every IP rule")
@_behavior_options
@click.pass_context
def wipe(
    ctx: click.Context,
    yes: bool,
    backup: bool | None,
    backup_dir: Path | None,
    dry_run: bool,
) -> None:
    """Remove every IP rule from the firewall.

    With the default action set to Deny this blocks all public access.
    A backup taken in the same second as a previous run for this account
    cannot be written; the wipe then proceeds without one.
    """
    config = _build_config(
        ctx,
        backup_enabled=backup,
        backup_dir=backup_dir.resolve() if backup_dir else None,
        dry_run=dry_run or None,
    )
    if not yes and not config.dry_run:
        raise click.UsageError("Refusing to remove every IP rule without --yes")
    sys.exit(runner.wipe_rules(config))


@cli.command()
@click.pass_context
def show(ctx: click.Context) -> None:
    """Show network access settings and the current allow-list."""
    sys.exit(runner.show_firewall(_build_config(ctx, backup_enabled=False)))


@cli.command()
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path))
def validate(file: Path) -> None:
    """Parse an allow-list FILE and report invalid lines (no Azure access)."""
    sys.exit(runner.validate_file(file))


# =============================================================================
# DNS Commands
# =============================================================================


@cli.group()
def dns() -> None:
    """Private DNS helpers: toggle the feature flag, inspect resolution."""
    pass


@dns.command("toggle")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path), default="setup.sh")
@click.option(
    "--flag",
    "-f",
    default=DEFAULT_SHELL_FLAG,
    show_default=True,
    help="Flag to flip (shell variable or YAML key)",
)
def dns_toggle(path: Path, flag: str) -> None:
    """Flip a flag in a YAML flags file or a provisioning script (PATH).

    \b
    Examples:
        stgfw dns toggle                       # ENABLE_PRIVATE_DNS in ./setup.sh
        stgfw dns toggle flags.yaml -f enablePrivateDns
    """
    sys.exit(runner.toggle_flag(path, flag))


@dns.command("check")
@click.pass_context
def dns_check(ctx: click.Context) -> None:
    """Resolve the blob endpoint and report whether it uses Private Link."""
    sys.exit(runner.check_dns(_build_config(ctx, backup_enabled=False)))


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
