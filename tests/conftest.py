"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from azure_mock import MockFirewall  # noqa: E402
from storage_firewall.config import Config  # noqa: E402

ACCOUNT = "stgdemopoceastus201"
RESOURCE_GROUP = "rg-stgdemo-poc-eastus2-01"


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Merge-mode configuration writing backups to a temp directory."""
    return Config(
        storage_account=ACCOUNT,
        resource_group=RESOURCE_GROUP,
        backup_dir=tmp_path,
    )


@pytest.fixture
def firewall() -> MockFirewall:
    """Empty in-memory firewall."""
    return MockFirewall(account=ACCOUNT, resource_group=RESOURCE_GROUP)
