"""
Pytest configuration and fixtures for PII vault tests.
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Iterator, List

import pytest
from dotenv import load_dotenv

from pii_vault import (
    EnvelopeEngine,
    KeyCache,
    KeyNotFoundError,
    MockBackend,
    TransitBackend,
    VaultSettings,
)
from pii_vault.backend import is_mock_address


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingBackend(MockBackend):
    """MockBackend that records calls and can be slowed down or made to fail."""

    def __init__(self, delay: float = 0.0) -> None:
        super().__init__()
        self.delay = delay
        self.fail_with: Exception | None = None
        self.ensure_calls: List[bytes] = []
        self.fetch_calls: List[bytes] = []
        self._calls_lock = threading.Lock()

    def _maybe_fail(self) -> None:
        if self.delay:
            time.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    def ensure_key(self, key_id: bytes) -> bytes:
        with self._calls_lock:
            self.ensure_calls.append(bytes(key_id))
        self._maybe_fail()
        return super().ensure_key(key_id)

    def fetch_key(self, key_id: bytes) -> bytes:
        with self._calls_lock:
            self.fetch_calls.append(bytes(key_id))
        self._maybe_fail()
        return super().fetch_key(key_id)

    @property
    def total_calls(self) -> int:
        return len(self.ensure_calls) + len(self.fetch_calls)


class GatedBackend(CountingBackend):
    """CountingBackend whose next fetch_key blocks after reading the backend."""

    def __init__(self) -> None:
        super().__init__()
        self.fetch_reached = threading.Event()
        self.release_fetch = threading.Event()
        self._gate_next = False

    def gate_next_fetch(self) -> None:
        self.fetch_reached.clear()
        self.release_fetch.clear()
        self._gate_next = True

    def fetch_key(self, key_id: bytes) -> bytes:
        gated, self._gate_next = self._gate_next, False
        try:
            material = super().fetch_key(key_id)
        except KeyNotFoundError:
            if gated:
                self._hold()
            raise
        if gated:
            self._hold()
        return material

    def _hold(self) -> None:
        self.fetch_reached.set()
        assert self.release_fetch.wait(5), "gated fetch never released"


@pytest.fixture
def clock() -> ManualClock:
    """Hand-driven clock for TTL tests."""
    return ManualClock()


@pytest.fixture
def mock_backend() -> MockBackend:
    """Create an in-memory backend for testing."""
    return MockBackend()


@pytest.fixture
def counting_backend() -> CountingBackend:
    """Create a call-recording in-memory backend."""
    return CountingBackend()


@pytest.fixture
def key_cache(counting_backend: CountingBackend, clock: ManualClock) -> KeyCache:
    """Cache with a 300s TTL on the manual clock."""
    return KeyCache(counting_backend, ttl_seconds=300, clock=clock)


@pytest.fixture
def engine(key_cache: KeyCache) -> EnvelopeEngine:
    """Engine over the counting backend and manual clock."""
    return EnvelopeEngine(key_cache)


@pytest.fixture
def vault_settings() -> VaultSettings:
    """Settings for a live Vault server, skipping when none is configured."""
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(env_path)

    address = os.environ.get("PII_VAULT_URL")
    if not address or is_mock_address(address):
        pytest.skip("PII_VAULT_URL not set to a real Vault, skipping transit tests")

    return VaultSettings.from_env(dotenv=False)


@pytest.fixture
def transit_backend(vault_settings: VaultSettings) -> Iterator[TransitBackend]:
    """Live transit backend."""
    backend = TransitBackend.from_settings(vault_settings)
    yield backend
    backend.close()
