"""Allow-list backups written before any firewall mutation.

Backups are plain text, one address per line, sorted, and named
``backup-<account>-<YYYYMMDD-HHMMSS>.txt``. They are for manual recovery
only; nothing in this package reads them back.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from .addresses import IPv4Address, sort_addresses

logger = logging.getLogger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


class BackupWriteFailed(Exception):
    """Raised when a backup file could not be written."""

    pass


def backup_filename(account: str, now: datetime) -> str:
    return f"backup-{account}-{now.strftime(BACKUP_TIMESTAMP_FORMAT)}.txt"


def write_backup(
    account: str,
    addresses: Iterable[IPv4Address],
    directory: Path | None = None,
    now: datetime | None = None,
) -> Path:
    """Write a snapshot of the allow-list.

    File names have one-second resolution. A second run for the same account
    within that second gets BackupWriteFailed, and the reconciler continues
    without a snapshot.

    Args:
        account: Storage account the snapshot belongs to.
        addresses: Remote allow-list at the moment of the call.
        directory: Target directory (default: current working directory).
        now: Timestamp for the file name (default: local time).

    Returns:
        Path of the written backup.

    Raises:
        BackupWriteFailed: If the file exists already or cannot be written.
    """
    target_dir = directory if directory is not None else Path.cwd()
    path = target_dir / backup_filename(account, now or datetime.now())
    content = "".join(f"{address}\n" for address in sort_addresses(addresses))

    try:
        # "x" refuses to overwrite an earlier backup taken in the same second
        with path.open("x", encoding="utf-8") as f:
            f.write(content)
    except FileExistsError as e:
        raise BackupWriteFailed(f"Backup file already exists: {path}") from e
    except OSError as e:
        raise BackupWriteFailed(f"Failed to write backup {path}: {e}") from e

    logger.info("Wrote allow-list backup", extra={"path": str(path), "account": account})
    return path
