"""IPv4 allow-list parsing and validation.

Every address that reaches the reconciler goes through IPv4Address, so an
unvalidated string can never be sent to the firewall. Desired-state files
are plain text: one address per line, blank lines and ``#`` comments ignored.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .config import MAX_ALLOW_LIST_FILE_SIZE_BYTES

logger = logging.getLogger(__name__)

OCTET_COUNT = 4
MAX_OCTET_VALUE = 255
COMMENT_PREFIX = "#"


class AddressErrorReason(str, Enum):
    """Why a candidate address was rejected."""

    FORMAT = "invalid format"
    RANGE = "octet out of range"


class InvalidAddress(ValueError):
    """Raised when a candidate string is not a valid IPv4 address."""

    def __init__(self, text: str, reason: AddressErrorReason) -> None:
        self.text = text
        self.reason = reason
        super().__init__(f"{reason.value}: {text!r}")


class EmptyDesiredState(Exception):
    """Raised when the desired state contains no valid address."""

    pass


class DesiredStateLoadError(Exception):
    """Raised when a desired-state file cannot be read."""

    pass


@dataclass(frozen=True, order=True)
class IPv4Address:
    """A validated dotted-decimal IPv4 address.

    Octets are normalised to their integer spelling, so ``010.0.0.1`` and
    ``10.0.0.1`` are the same address. Ordering is lexicographic on the
    dotted-decimal string.
    """

    value: str

    def __post_init__(self) -> None:
        text = self.value.strip()
        groups = text.split(".")
        if len(groups) != OCTET_COUNT or not all(_is_decimal(group) for group in groups):
            raise InvalidAddress(text, AddressErrorReason.FORMAT)
        octets = [int(group) for group in groups]
        if any(octet > MAX_OCTET_VALUE for octet in octets):
            raise InvalidAddress(text, AddressErrorReason.RANGE)
        object.__setattr__(self, "value", ".".join(str(octet) for octet in octets))

    def __str__(self) -> str:
        return self.value


def _is_decimal(group: str) -> bool:
    # str.isdigit() also accepts non-ASCII digits such as "²"
    return bool(group) and all("0" <= ch <= "9" for ch in group)


@dataclass(frozen=True)
class RejectedLine:
    """A desired-state line that failed validation."""

    line_number: int
    text: str
    reason: AddressErrorReason

    def __str__(self) -> str:
        return f"line {self.line_number}: {self.text!r} ({self.reason.value})"


@dataclass
class ParseResult:
    """Outcome of parsing a desired-state source."""

    addresses: frozenset[IPv4Address] = field(default_factory=frozenset)
    rejected: list[RejectedLine] = field(default_factory=list)

    @property
    def sorted_addresses(self) -> list[IPv4Address]:
        return sort_addresses(self.addresses)

    @property
    def is_empty(self) -> bool:
        return not self.addresses


def sort_addresses(addresses: Iterable[IPv4Address]) -> list[IPv4Address]:
    """Return addresses in the stable display and persist order."""
    return sorted(set(addresses))


def parse_allow_list(source: str | Iterable[str]) -> ParseResult:
    """Parse desired-state text into validated addresses and rejected lines.

    Args:
        source: Whole text, or an iterable of lines.

    Returns:
        ParseResult with the deduplicated valid addresses and every rejected
        line with its 1-based line number and reason.
    """
    lines = source.splitlines() if isinstance(source, str) else source

    valid: set[IPv4Address] = set()
    rejected: list[RejectedLine] = []

    for line_number, raw_line in enumerate(lines, start=1):
        candidate = raw_line.strip()
        if not candidate or candidate.startswith(COMMENT_PREFIX):
            continue
        try:
            valid.add(IPv4Address(candidate))
        except InvalidAddress as e:
            rejected.append(RejectedLine(line_number, candidate, e.reason))

    return ParseResult(addresses=frozenset(valid), rejected=rejected)


def load_allow_list(path: Path) -> ParseResult:
    """Load and parse a desired-state file.

    Raises:
        DesiredStateLoadError: If the file is missing, too large, unreadable
            or not UTF-8.
    """
    if not path.is_file():
        raise DesiredStateLoadError(f"Allow-list file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise DesiredStateLoadError(f"Failed to stat allow-list file {path}: {e}") from e

    if file_size > MAX_ALLOW_LIST_FILE_SIZE_BYTES:
        raise DesiredStateLoadError(
            f"Allow-list file exceeds maximum size of {MAX_ALLOW_LIST_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        # utf-8-sig drops the byte-order mark Windows editors prepend
        content = path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as e:
        raise DesiredStateLoadError(f"Allow-list file is not valid UTF-8: {path}") from e
    except OSError as e:
        raise DesiredStateLoadError(f"Failed to read allow-list file {path}: {e}") from e

    result = parse_allow_list(content)
    logger.info(
        "Loaded allow-list from %s",
        path,
        extra={"valid_count": len(result.addresses), "rejected_count": len(result.rejected)},
    )
    return result


def require_addresses(result: ParseResult) -> frozenset[IPv4Address]:
    """Return the valid addresses, refusing to continue with none.

    Raises:
        EmptyDesiredState: If no valid address was parsed.
    """
    if result.is_empty:
        raise EmptyDesiredState(
            f"No valid IPv4 addresses in desired state ({len(result.rejected)} rejected lines)"
        )
    return result.addresses


def parse_remote_rules(entries: Iterable[str]) -> frozenset[IPv4Address]:
    """Validate entries reported by the firewall, dropping anything malformed.

    The firewall can hold CIDR ranges or entries this tool did not write;
    they are skipped rather than failing the whole fetch.
    """
    addresses: set[IPv4Address] = set()
    for entry in entries:
        candidate = entry.strip()
        if not candidate:
            continue
        try:
            addresses.add(IPv4Address(candidate))
        except InvalidAddress as e:
            logger.debug("Ignoring firewall entry %r: %s", candidate, e.reason.value)
    return frozenset(addresses)
