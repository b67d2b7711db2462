"""Pytest configuration and fixtures."""

import pytest

from taskstore.storage.config import ENV_VARS


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """Remove storage variables so the host environment cannot leak in."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    yield
