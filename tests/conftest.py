"""Shared fixtures: controllable clocks and a recording traffic store."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import List, Optional, Set, Tuple

import pytest

from vhostlog.core.exceptions import TrafficStoreError
from vhostlog.services.accounting import TrafficStore


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self, value: float = 0.0) -> None:
        self.value = value

    def __call__(self) -> float:
        return self.value


class RecordingStore(TrafficStore):
    def __init__(self, failing: Optional[Set[str]] = None) -> None:
        self.failing = failing or set()
        self.hosts: dict[str, int] = {}
        self.upserts: List[Tuple[int, date, int]] = []

    def find_or_create_host(self, name: str) -> int:
        return self.hosts.setdefault(name, len(self.hosts) + 1)

    def upsert_traffic_total(self, host_id, day, delta) -> None:
        names = {v: k for k, v in self.hosts.items()}
        if names.get(host_id) in self.failing:
            raise TrafficStoreError(f"refusing {names[host_id]}")
        self.upserts.append((host_id, day, delta))


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path_factory, monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep a developer's .env out of the settings under test.
    monkeypatch.chdir(tmp_path_factory.mktemp("cwd"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 14, 23, 59, 0))


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()
