"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from raboard.readiness import init_presence, init_room  # noqa: E402


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def board_root(tmp_path: Path) -> Path:
    """A share root with room ``general`` and the presence folder provisioned."""
    root = tmp_path / "board"
    init_room(root, "general")
    init_presence(root)
    return root


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in list(os.environ):
        if var.startswith("BOARD_SERVER"):
            monkeypatch.delenv(var, raising=False)
    yield


class FakeClock:
    """Deterministic clock; ``advance`` moves it forward."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 11, 12, 3, 21, 45, 123000, tzinfo=timezone.utc))
