from __future__ import annotations

from simbooking.domain.models import QueueStatus, WalkInEntry
from simbooking.domain.queue_estimator import assign_positions, estimate_queue, order_active_entries


def _entry(entry_id: int, status: QueueStatus, duration: int, joined_at: str, machine_id: int = 1) -> WalkInEntry:
    return WalkInEntry(
        entry_id=entry_id,
        machine_id=machine_id,
        customer_name=f"Driver {entry_id}",
        customer_phone="0812345678",
        duration_minutes=duration,
        status=status,
        joined_at=joined_at,
    )


def _sample_queue() -> list[WalkInEntry]:
    return [
        _entry(3, QueueStatus.WAITING, 30, "2026-10-20T13:10:00+07:00"),
        _entry(1, QueueStatus.PLAYING, 60, "2026-10-20T12:00:00+07:00"),
        _entry(2, QueueStatus.WAITING, 30, "2026-10-20T13:00:00+07:00"),
    ]


def test_second_waiting_entry_waits_for_playing_and_first_waiting() -> None:
    estimate = estimate_queue(1, _sample_queue(), position=3)

    assert estimate.waiting_count == 2
    assert estimate.playing_count == 1
    assert estimate.estimated_wait_minutes == 90
    assert estimate.next_position == 4


def test_new_arrival_waits_behind_everyone() -> None:
    estimate = estimate_queue(1, _sample_queue())
    assert estimate.estimated_wait_minutes == 120


def test_empty_queue_has_no_wait() -> None:
    estimate = estimate_queue(1, [])
    assert estimate.estimated_wait_minutes == 0
    assert estimate.next_position == 1


def test_positions_are_dense_with_playing_first() -> None:
    positions = assign_positions(_sample_queue())
    assert positions == {1: 1, 2: 2, 3: 3}


def test_cancelled_entries_shift_later_positions_down() -> None:
    entries = _sample_queue()
    entries[2] = _entry(2, QueueStatus.CANCELLED, 30, "2026-10-20T13:00:00+07:00")

    positions = assign_positions(entries)
    assert positions == {1: 1, 3: 2}
    assert estimate_queue(1, entries, position=2).estimated_wait_minutes == 60


def test_other_machines_are_not_counted() -> None:
    entries = _sample_queue() + [_entry(9, QueueStatus.WAITING, 180, "2026-10-20T11:00:00+07:00", machine_id=2)]
    assert estimate_queue(1, entries).waiting_count == 2
    assert [entry.entry_id for entry in order_active_entries(entries) if entry.machine_id == 2] == [9]


def test_legacy_statuses_map_to_playing() -> None:
    assert QueueStatus("called") is QueueStatus.PLAYING
    assert QueueStatus("seated") is QueueStatus.PLAYING
