"""Pytest configuration for clawboard tests."""

import os

import pytest

# Config is loaded at import time; keep the developer's ~/.clawboard and .env out of tests.
os.environ["CLAWBOARD_CONFIG_PATH"] = "/nonexistent/clawboard/config.yml"
os.environ["CLAWBOARD_ENV_PATH"] = "/nonexistent/clawboard/.env"
os.environ.pop("CLAWBOARD_TOKEN", None)


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=1s, integration=5s."""
    for item in items:
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(1))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(5))
