"""Provisioning feature flags.

Flags live in a small YAML file validated with pydantic::

    enablePrivateDns: true
    hierarchicalNamespace: false

The provisioning shell scripts still carry the same flags as inline
variables (``ENABLE_PRIVATE_DNS="true"``); toggle_shell_flag() flips those
in place, touching only the matching line.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from .config import MAX_FEATURE_FLAGS_FILE_SIZE_BYTES

logger = logging.getLogger(__name__)

DEFAULT_SHELL_FLAG = "ENABLE_PRIVATE_DNS"


class ConfigFlagNotFound(Exception):
    """Raised when the requested flag is not present in the source."""

    def __init__(self, name: str, source: str) -> None:
        self.name = name
        super().__init__(f"Flag '{name}' not found in {source}")


class FeatureFlagsLoadError(Exception):
    """Raised when the flags file cannot be read or validated."""

    pass


class FeatureFlags(BaseModel):
    """Feature flags consumed by the provisioning workflow."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    # Create private endpoints with automatic private DNS zone integration
    enable_private_dns: bool = Field(True, alias="enablePrivateDns")
    # Provision the storage account as Data Lake Storage Gen2
    hierarchical_namespace: bool = Field(False, alias="hierarchicalNamespace")

    @classmethod
    def resolve_field(cls, name: str) -> str:
        """Map a flag name in any accepted spelling to its field name.

        Accepts the field name, its alias, or the shell variable spelling
        (``ENABLE_PRIVATE_DNS``).

        Raises:
            ConfigFlagNotFound: If the name matches no flag.
        """
        wanted = name.replace("-", "_").lower()
        for field_name, info in cls.model_fields.items():
            if wanted in (field_name, (info.alias or "").lower()):
                return field_name
        raise ConfigFlagNotFound(name, cls.__name__)


def _read_raw(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise FeatureFlagsLoadError(f"Feature flags file not found: {path}")

    try:
        if path.stat().st_size > MAX_FEATURE_FLAGS_FILE_SIZE_BYTES:
            raise FeatureFlagsLoadError(
                f"Feature flags file exceeds maximum size of "
                f"{MAX_FEATURE_FLAGS_FILE_SIZE_BYTES} bytes: {path}"
            )
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FeatureFlagsLoadError(f"Failed to read feature flags {path}: {e}") from e

    try:
        raw = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise FeatureFlagsLoadError(f"Invalid YAML in {path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise FeatureFlagsLoadError(f"Feature flags file must contain a YAML mapping: {path}")
    return raw


def load_feature_flags(path: Path) -> FeatureFlags:
    """Load and validate a feature flags file.

    Raises:
        FeatureFlagsLoadError: If the file is missing, malformed or invalid.
    """
    raw = _read_raw(path)
    try:
        return FeatureFlags.model_validate(raw)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise FeatureFlagsLoadError(f"Validation failed for {path}:\n{error_list}") from e


def save_feature_flags(path: Path, flags: FeatureFlags) -> None:
    """Write flags using their camelCase aliases."""
    data = flags.model_dump(by_alias=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")


def toggle_feature_flag(path: Path, name: str) -> bool:
    """Flip one flag in a YAML flags file.

    Only flags that are explicitly present in the file can be toggled;
    a flag relying on its default is reported as missing.

    Returns:
        The new value.

    Raises:
        ConfigFlagNotFound: If the flag is unknown or absent from the file.
        FeatureFlagsLoadError: If the file cannot be loaded.
    """
    field_name = FeatureFlags.resolve_field(name)
    alias = FeatureFlags.model_fields[field_name].alias
    raw = _read_raw(path)
    if field_name not in raw and alias not in raw:
        raise ConfigFlagNotFound(name, str(path))

    flags = load_feature_flags(path)
    new_value = not getattr(flags, field_name)
    updated = flags.model_copy(update={field_name: new_value})
    save_feature_flags(path, updated)

    logger.info("Feature flag toggled", extra={"flag": field_name, "value": new_value})
    return new_value


def _shell_flag_pattern(name: str) -> re.Pattern[str]:
    return re.compile(rf'\b{re.escape(name)}="(true|false)"')


def toggle_shell_flag(text: str, name: str = DEFAULT_SHELL_FLAG) -> tuple[str, bool]:
    """Flip ``NAME="true"`` / ``NAME="false"`` in shell script text.

    Only the first line holding the flag is rewritten; everything else,
    including trailing comments on that line, is preserved.

    Returns:
        The rewritten text and the new value.

    Raises:
        ConfigFlagNotFound: If neither literal value is present.
    """
    pattern = _shell_flag_pattern(name)
    lines = text.splitlines(keepends=True)
    for i, line in enumerate(lines):
        match = pattern.search(line)
        if match is None:
            continue
        new_value = match.group(1) != "true"
        literal = "true" if new_value else "false"
        lines[i] = line[: match.start()] + f'{name}="{literal}"' + line[match.end() :]
        return "".join(lines), new_value
    raise ConfigFlagNotFound(name, "script text")


def toggle_shell_flag_file(path: Path, name: str = DEFAULT_SHELL_FLAG) -> bool:
    """Apply toggle_shell_flag() to a script file in place.

    Raises:
        FeatureFlagsLoadError: If the file cannot be read.
        ConfigFlagNotFound: If the flag is not present.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FeatureFlagsLoadError(f"Failed to read {path}: {e}") from e

    try:
        new_text, new_value = toggle_shell_flag(text, name)
    except ConfigFlagNotFound as e:
        raise ConfigFlagNotFound(name, str(path)) from e

    path.write_text(new_text, encoding="utf-8")
    logger.info("Shell flag toggled", extra={"flag": name, "value": new_value, "path": str(path)})
    return new_value


def is_yaml_path(path: Path) -> bool:
    return path.suffix.lower() in (".yaml", ".yml")
