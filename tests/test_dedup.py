from __future__ import annotations

from app.dedup import RawMessageDeduplicator


def test_repeat_within_spacing_is_duplicate(clock) -> None:
    dedup = RawMessageDeduplicator(1.0, clock=clock)
    assert dedup.is_duplicate("1001", "a0b1") is False
    clock.advance(0.5)
    assert dedup.is_duplicate("1001", "a0b1") is True


def test_repeat_after_spacing_passes(clock) -> None:
    dedup = RawMessageDeduplicator(1.0, clock=clock)
    assert dedup.is_duplicate("1001", "a0b1") is False
    clock.advance(1.0)
    assert dedup.is_duplicate("1001", "a0b1") is False


def test_tag_and_device_are_both_part_of_the_key(clock) -> None:
    dedup = RawMessageDeduplicator(1.0, clock=clock)
    assert dedup.is_duplicate("1001", "a0b1") is False
    assert dedup.is_duplicate("1001", "ffff") is False
    assert dedup.is_duplicate("1002", "a0b1") is False


def test_evict_drops_entries_past_horizon(clock) -> None:
    dedup = RawMessageDeduplicator(1.0, clock=clock)
    dedup.is_duplicate("1001", "a")
    dedup.is_duplicate("1002", "b")
    clock.advance(5)
    assert dedup.evict() == 0
    clock.advance(6)
    assert dedup.evict() == 2
    assert len(dedup) == 0
