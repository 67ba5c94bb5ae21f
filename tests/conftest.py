"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# ``app`` sits at the project root; make it importable without an install.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def sqlite_url(tmp_path: Path) -> str:
    """Return an aiosqlite URL for a throwaway database file."""

    return f"sqlite+aiosqlite:///{tmp_path / 'seerrcatalog-test.db'}"
