"""Tests for provisioning feature flags."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from storage_firewall.feature_flags import (
    ConfigFlagNotFound,
    FeatureFlags,
    FeatureFlagsLoadError,
    is_yaml_path,
    load_feature_flags,
    save_feature_flags,
    toggle_feature_flag,
    toggle_shell_flag,
    toggle_shell_flag_file,
)

SETUP_SCRIPT = """#!/bin/bash
set -e

WORKLOAD="stgdemo"
ENABLE_PRIVATE_DNS="true"  # Set to "false" to use manual DNS configuration
HIERARCHICAL_NAMESPACE="false"

if [ "$ENABLE_PRIVATE_DNS" = "true" ]; then
    echo "private DNS"
fi
"""


class TestFeatureFlagsModel:
    """Tests for the FeatureFlags model."""

    def test_defaults(self) -> None:
        flags = FeatureFlags()

        assert flags.enable_private_dns is True
        assert flags.hierarchical_namespace is False

    def test_unknown_keys_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "flags.yaml"
        path.write_text("enablePrivateDns: true\nenablePublicDns: false\n")

        with pytest.raises(FeatureFlagsLoadError) as exc_info:
            load_feature_flags(path)

        assert "enablePublicDns" in str(exc_info.value)

    def test_non_boolean_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "flags.yaml"
        path.write_text("enablePrivateDns: sometimes\n")

        with pytest.raises(FeatureFlagsLoadError) as exc_info:
            load_feature_flags(path)

        assert "Validation failed" in str(exc_info.value)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "flags.yaml"
        path.write_text("- enablePrivateDns\n")

        with pytest.raises(FeatureFlagsLoadError):
            load_feature_flags(path)

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "flags.yaml"
        path.write_text("")

        assert load_feature_flags(path) == FeatureFlags()

    @pytest.mark.parametrize(
        "name",
        ["enable_private_dns", "enablePrivateDns", "ENABLE_PRIVATE_DNS", "enable-private-dns"],
    )
    def test_resolve_field(self, name: str) -> None:
        assert FeatureFlags.resolve_field(name) == "enable_private_dns"

    def test_resolve_unknown_field(self) -> None:
        with pytest.raises(ConfigFlagNotFound):
            FeatureFlags.resolve_field("ENABLE_MAGIC")

    def test_save_uses_aliases(self, tmp_path: Path) -> None:
        path = tmp_path / "flags.yaml"

        save_feature_flags(path, FeatureFlags(hierarchical_namespace=True))

        assert yaml.safe_load(path.read_text()) == {
            "enablePrivateDns": True,
            "hierarchicalNamespace": True,
        }


class TestToggleFeatureFlag:
    """Tests for toggling flags in a YAML file."""

    def test_toggle_twice_restores_value(self, tmp_path: Path) -> None:
        path = tmp_path / "flags.yaml"
        path.write_text("enablePrivateDns: true\nhierarchicalNamespace: false\n")

        assert toggle_feature_flag(path, "ENABLE_PRIVATE_DNS") is False
        assert load_feature_flags(path).enable_private_dns is False
        assert load_feature_flags(path).hierarchical_namespace is False

        assert toggle_feature_flag(path, "enablePrivateDns") is True
        assert load_feature_flags(path).enable_private_dns is True

    def test_absent_flag_not_toggled(self, tmp_path: Path) -> None:
        path = tmp_path / "flags.yaml"
        path.write_text("hierarchicalNamespace: false\n")

        with pytest.raises(ConfigFlagNotFound):
            toggle_feature_flag(path, "enablePrivateDns")

        assert path.read_text() == "hierarchicalNamespace: false\n"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FeatureFlagsLoadError):
            toggle_feature_flag(tmp_path / "missing.yaml", "enablePrivateDns")


class TestToggleShellFlag:
    """Tests for toggling inline shell variables."""

    def test_true_to_false(self) -> None:
        text, value = toggle_shell_flag(SETUP_SCRIPT)

        assert value is False
        assert 'ENABLE_PRIVATE_DNS="false"  # Set to "false" to use manual' in text
        # the conditional further down is left alone
        assert 'if [ "$ENABLE_PRIVATE_DNS" = "true" ]; then' in text

    def test_toggle_twice_is_identity(self) -> None:
        once, _ = toggle_shell_flag(SETUP_SCRIPT)
        twice, value = toggle_shell_flag(once)

        assert value is True
        assert twice == SETUP_SCRIPT

    def test_other_flag(self) -> None:
        text, value = toggle_shell_flag(SETUP_SCRIPT, "HIERARCHICAL_NAMESPACE")

        assert value is True
        assert 'HIERARCHICAL_NAMESPACE="true"' in text
        assert 'ENABLE_PRIVATE_DNS="true"' in text

    def test_missing_flag(self) -> None:
        with pytest.raises(ConfigFlagNotFound):
            toggle_shell_flag('WORKLOAD="stgdemo"\n')

    def test_similar_name_not_matched(self) -> None:
        with pytest.raises(ConfigFlagNotFound):
            toggle_shell_flag('MY_ENABLE_PRIVATE_DNS_X="true"\n')

    def test_file_in_place(self, tmp_path: Path) -> None:
        path = tmp_path / "setup.sh"
        path.write_text(SETUP_SCRIPT)

        assert toggle_shell_flag_file(path) is False
        assert 'ENABLE_PRIVATE_DNS="false"' in path.read_text()

    def test_file_missing_flag_names_path(self, tmp_path: Path) -> None:
        path = tmp_path / "setup.sh"
        path.write_text("echo hi\n")

        with pytest.raises(ConfigFlagNotFound) as exc_info:
            toggle_shell_flag_file(path)

        assert str(path) in str(exc_info.value)
        assert path.read_text() == "echo hi\n"

    def test_is_yaml_path(self) -> None:
        assert is_yaml_path(Path("flags.yaml"))
        assert is_yaml_path(Path("flags.YML"))
        assert not is_yaml_path(Path("setup.sh"))
