# sharescan/cache/tests/conftest.py
"""
Pytest conftest for sharescan.cache tests.

Provides a recording credential issuer and a controllable clock.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional

import pytest

from sharescan.data_classes import TableReference

HOUR_MS = 3_600_000


@pytest.fixture(autouse=True, scope="session")
def _suppress_test_log_noise():
    """Refresh failures and lease takeovers log warnings on purpose."""
    logging.getLogger("sharescan").setLevel(logging.CRITICAL)
    yield
    logging.getLogger("sharescan").setLevel(logging.NOTSET)


class ManualClock:
    """Epoch-millis clock that only moves when told to."""

    def __init__(self, now_ms: int = 1_000_000):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class RecordingIssuer:
    """
    Credential issuer that records every sign() call.

    URLs carry the call number so tests can tell refreshed entries apart.
    `gate` (when set) blocks the n-th call listed in `block_calls` until released.
    """

    def __init__(self, clock: ManualClock, ttl_ms: int = HOUR_MS):
        self.clock = clock
        self.ttl_ms = ttl_ms
        self.calls: List[List[str]] = []
        self.fail_with: Optional[Exception] = None
        self.skip_ids: set = set()
        self.block_calls: set = set()
        self.started = threading.Event()
        self.gate = threading.Event()
        self._lock = threading.Lock()

    def sign(self, table: TableReference, file_ids: Iterable[str]) -> Dict[str, tuple]:
        file_ids = list(file_ids)
        with self._lock:
            self.calls.append(file_ids)
            call_no = len(self.calls)
        if call_no in self.block_calls:
            self.started.set()
            self.gate.wait(5)
        if self.fail_with is not None:
            raise self.fail_with
        expiration = self.clock() + self.ttl_ms
        return {
            f: (f"https://storage.example.com/{table.name}/{f}?sig=call{call_no}", expiration)
            for f in file_ids
            if f not in self.skip_ids
        }


@pytest.fixture()
def clock():
    return ManualClock()


@pytest.fixture()
def issuer(clock):
    return RecordingIssuer(clock)


@pytest.fixture()
def table():
    return TableReference("share1", "default", "table1")
