"""Pytest configuration."""

import os
import pytest


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: mark test as requiring a live database (skipped in CI by default)"
    )


# Never talk to a real database or engine from unit tests
os.environ.setdefault("DATABASE_URL", "postgresql://localhost:5432/opening_leaks?user=postgres&password=postgres")
os.environ.pop("LICHESS_TOKEN", None)
