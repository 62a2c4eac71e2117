"""Shared fixtures."""

import os
from unittest.mock import MagicMock

import pytest

from n8n_bootstrap.core.config_loader import BootstrapSettings
from n8n_bootstrap.core.local_runner import CommandResult

running_as_root = hasattr(os, "geteuid") and os.geteuid() == 0


@pytest.fixture
def settings():
    return BootstrapSettings(domain="n8n.example.com", email="admin@example.com")


@pytest.fixture
def secrets_dir(tmp_path):
    return tmp_path / "secrets"


@pytest.fixture
def runner():
    """LocalRunner double where every command succeeds."""
    mock = MagicMock()
    mock.run_command.return_value = CommandResult(stdout="", stderr="", return_code=0, success=True)
    return mock
