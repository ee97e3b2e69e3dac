"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

os.environ.setdefault("API_BASE_URL", "http://api.test/api")
os.environ.setdefault("REALTIME_URL", "ws://realtime.test")
os.environ.setdefault("HEARTBEAT_INTERVAL_SECONDS", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Ensure the b2b_realtime package is importable when tests run from the repo root.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

from b2b_realtime.core.security import InMemoryTokenStore
from b2b_realtime.realtime.backoff import ReconnectionPolicy
from b2b_realtime.realtime.connection import ConnectionManager
from tests.utils import FakeTransport, SleepRecorder


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore("test-access-token")


@pytest.fixture()
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def manager(transport, token_store, sleeper) -> ConnectionManager:
    return ConnectionManager(
        transport,
        token_store,
        policy=ReconnectionPolicy(base_delay_ms=1000, max_attempts=5),
        heartbeat_interval=None,
        history_limit=10,
        sleep=sleeper,
    )
