"""Pytest configuration and shared fixtures for SiteDeck tests."""

import os
import shutil
import tempfile
import threading
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from aws_fakes import make_clients

from sitedeck.deploy.aws.client import AwsClients
from sitedeck.deploy.events import EventRecorder
from sitedeck.deploy.state import StateStore
from sitedeck.lib import retry


class FakeClock:
    """Replacement for the ``time`` module used by :mod:`sitedeck.lib.retry`.

    Sleeping advances the clock instantly, so polling loops and backoff run
    without real waiting.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self._lock = threading.Lock()

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds


@pytest.fixture(autouse=True)
def fake_clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Route every SiteDeck sleep and deadline through a fake clock."""
    clock = FakeClock()
    monkeypatch.setattr(retry, "time", clock)
    return clock


@pytest.fixture
def temp_dir() -> Generator[Path]:
    """Create a temporary directory for test file operations.

    Yields:
        Path to temporary directory

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def isolated_env() -> Generator[dict[str, str]]:
    """Provide isolated environment variables for testing.

    Saves current environment and restores after test.

    Yields:
        Dictionary of original environment variables

    Cleanup:
        Restores original environment after test
    """
    original_env = os.environ.copy()
    yield original_env
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def clients() -> AwsClients:
    """AWS clients backed by in-memory fakes."""
    return make_clients()


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    """State store rooted in a temporary directory."""
    return StateStore(tmp_path / ".sitedeck")


@pytest.fixture
def recorder() -> EventRecorder:
    """Reporter collecting every progress event."""
    return EventRecorder()


@pytest.fixture
def build_dir(tmp_path: Path) -> Path:
    """A small static site build."""
    root = tmp_path / "dist"
    (root / "assets").mkdir(parents=True)
    (root / "index.html").write_text("<h1>Home</h1>")
    (root / "about.html").write_text("<h1>About</h1>")
    (root / "assets" / "app.js").write_text("console.log('hi');")
    (root / "assets" / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n" + b"\0" * 32)
    return root


# Configure pytest
def pytest_configure(config: Any) -> None:
    """Configure pytest with marker options."""
    # Register custom markers
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests",
    )
    config.addinivalue_line(
        "markers",
        "unit: marks tests as unit tests",
    )
