"""Unit tests for traffic batching and the SQL backing store."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from vhostlog.core.database import build_session_factory, init_db
from vhostlog.models import Traffic, Vhost
from vhostlog.services.accounting import NullTrafficStore, SqlTrafficStore, TrafficAccountant
from vhostlog.services.handle_cache import HandleCache
from vhostlog.services.registry import VhostRegistry
from vhostlog.services.vhost_stream import RotationPolicy

from .conftest import FakeClock, FakeMonotonic, RecordingStore

DAY = date(2024, 3, 14)


def _registry(tmp_path: Path, accountant: TrafficAccountant, clock: FakeClock) -> VhostRegistry:
    return VhostRegistry(RotationPolicy(tmp_path, clock=clock), HandleCache(), accountant)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return build_session_factory(engine)


def test_same_host_and_day_is_batched_into_one_upsert(tmp_path, clock, store: RecordingStore) -> None:
    accountant = TrafficAccountant(store)
    registry = _registry(tmp_path, accountant, clock)
    registry.find("example.com")

    accountant.record("example.com", 500, DAY)
    accountant.record("example.com", 300, DAY)
    assert accountant.flush(registry) == 800

    assert store.upserts == [(1, DAY, 800)]
    assert accountant.pending("example.com") == 0


def test_flush_does_not_double_count(tmp_path, clock, store: RecordingStore) -> None:
    accountant = TrafficAccountant(store)
    registry = _registry(tmp_path, accountant, clock)
    registry.find("example.com")

    accountant.record("example.com", 100, DAY)
    accountant.flush(registry)
    accountant.flush(registry)
    accountant.record("example.com", 50, DAY)
    accountant.flush(registry)

    assert store.upserts == [(1, DAY, 100), (1, DAY, 50)]


def test_each_day_gets_its_own_bucket(tmp_path, clock, store: RecordingStore) -> None:
    accountant = TrafficAccountant(store)
    registry = _registry(tmp_path, accountant, clock)
    registry.find("example.com")
    next_day = date(2024, 3, 15)

    accountant.record("example.com", 10, next_day)
    accountant.record("example.com", 20, DAY)
    accountant.flush(registry)

    assert store.upserts == [(1, DAY, 20), (1, next_day, 10)]


def test_failed_host_is_retried_and_others_still_flush(tmp_path, clock) -> None:
    store = RecordingStore(failing={"bad.example.com"})
    accountant = TrafficAccountant(store)
    registry = _registry(tmp_path, accountant, clock)
    registry.find("bad.example.com")
    registry.find("good.example.com")

    accountant.record("bad.example.com", 70, DAY)
    accountant.record("good.example.com", 30, DAY)
    assert accountant.flush(registry) == 30
    assert accountant.pending("bad.example.com") == 70
    assert accountant.pending("good.example.com") == 0

    store.failing.clear()
    accountant.record("bad.example.com", 5, DAY)
    assert accountant.flush(registry) == 75
    assert store.upserts[-1] == (store.hosts["bad.example.com"], DAY, 75)


def test_zero_byte_records_create_nothing(store: RecordingStore) -> None:
    accountant = TrafficAccountant(store)
    accountant.record("example.com", 0, DAY)
    assert accountant.pending("example.com") == 0


def test_maybe_flush_polls_the_clock(tmp_path, clock, store: RecordingStore) -> None:
    monotonic = FakeMonotonic(0.0)
    accountant = TrafficAccountant(store, flush_interval=60.0, clock=monotonic)
    registry = _registry(tmp_path, accountant, clock)
    registry.find("example.com")
    accountant.record("example.com", 10, DAY)

    monotonic.value = 59.9
    assert accountant.maybe_flush(registry) is False
    assert store.upserts == []

    monotonic.value = 60.0
    assert accountant.maybe_flush(registry) is True
    assert store.upserts == [(1, DAY, 10)]
    assert accountant.next_flush_due == 120.0


def test_null_store_discards_traffic(tmp_path, clock) -> None:
    accountant = TrafficAccountant(NullTrafficStore())
    registry = _registry(tmp_path, accountant, clock)
    stream = registry.find("example.com")
    assert stream.host_id is None

    accountant.record("example.com", 10, DAY)
    assert accountant.flush(registry) == 10
    assert stream.traffic == 0


def test_sql_store_find_or_create_is_idempotent(session_factory) -> None:
    store = SqlTrafficStore(session_factory)
    first = store.find_or_create_host("example.com")
    assert store.find_or_create_host("example.com") == first
    assert store.find_or_create_host("other.com") != first

    db = session_factory()
    try:
        assert db.query(Vhost).count() == 2
    finally:
        db.close()


def test_sql_store_upsert_adds_to_existing_total(session_factory) -> None:
    store = SqlTrafficStore(session_factory)
    host_id = store.find_or_create_host("example.com")

    store.upsert_traffic_total(host_id, DAY, 800)
    store.upsert_traffic_total(host_id, DAY, 200)
    store.upsert_traffic_total(host_id, date(2024, 3, 15), 5)

    db = session_factory()
    try:
        rows = {row.date: row.bytes for row in db.query(Traffic).filter(Traffic.vhosts_id == host_id)}
    finally:
        db.close()
    assert rows == {DAY: 1000, date(2024, 3, 15): 5}
