"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path (development checkouts)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
MOCK_WORKER_PATH = FIXTURES_DIR / "mock_worker.py"


@pytest.fixture
def project_root() -> Path:
    """Project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def mock_worker_path() -> Path:
    """Path of the scripted mock worker."""
    return MOCK_WORKER_PATH


@pytest.fixture
def worker_config():
    """WorkerConfig that launches the mock worker with this interpreter."""
    from stdio_rpc.runtime import WorkerConfig

    return WorkerConfig(interpreter=sys.executable, script=str(MOCK_WORKER_PATH))


class EventRecorder:
    """Event sink that records every log event text."""

    def __init__(self) -> None:
        self.events: list[str] = []

    def __call__(self, text: str) -> None:
        self.events.append(text)

    def from_stream(self, stream: str) -> list[str]:
        tag = f"[{stream}] "
        return [e for e in self.events if e.startswith(tag)]


@pytest.fixture
def recorder() -> EventRecorder:
    """Recording event sink."""
    return EventRecorder()
