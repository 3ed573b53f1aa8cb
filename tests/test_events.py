"""
Tests for the bounded event log.
"""

import pytest

from profile_service.services.events import EventLog, EventType


def test_record_stamps_with_clock(clock):
    log = EventLog(capacity=10, clock=clock)

    event = log.record(EventType.CACHE_MISS, "u1", operation="get_user_profile")

    assert event.timestamp == clock.now
    assert event.metadata == {"operation": "get_user_profile"}
    assert log.snapshot() == [event]


def test_ring_drops_oldest_beyond_capacity():
    log = EventLog(capacity=3)
    for i in range(5):
        log.record(EventType.CACHE_HIT, f"u{i}")

    assert len(log) == 3
    assert [e.user_id for e in log.snapshot()] == ["u2", "u3", "u4"]
    assert log.dropped == 2


def test_snapshot_is_a_copy():
    log = EventLog()
    log.record(EventType.CACHE_HIT, "u1")

    snapshot = log.snapshot()
    snapshot.clear()

    assert len(log) == 1


def test_filter_by_type_and_user():
    log = EventLog()
    log.record(EventType.CACHE_HIT, "u1")
    log.record(EventType.CACHE_MISS, "u1")
    log.record(EventType.CACHE_HIT, "u2")

    assert len(log.filter(EventType.CACHE_HIT)) == 2
    assert len(log.filter(user_id="u1")) == 2
    assert len(log.filter(EventType.CACHE_HIT, "u2")) == 1


def test_to_dict_serializes_enum_and_timestamp(clock):
    log = EventLog(clock=clock)
    event = log.record(EventType.API_ERROR, None, code="FETCH_ERROR")

    data = event.to_dict()

    assert data["type"] == "api_error"
    assert data["timestamp"] == clock.now.isoformat()
    assert data["metadata"] == {"code": "FETCH_ERROR"}


def test_rejects_zero_capacity():
    with pytest.raises(ValueError):
        EventLog(capacity=0)


def test_event_types_cover_emitted_events():
    assert {t.value for t in EventType} == {
        "profile_updated",
        "profile_deleted",
        "cache_hit",
        "cache_miss",
        "api_error",
    }
