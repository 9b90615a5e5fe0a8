"""Walk-in queue position and wait estimation."""

from __future__ import annotations

from typing import Iterable, Optional

from simbooking.domain.models import QueueEstimate, QueueStatus, WalkInEntry


def order_active_entries(entries: Iterable[WalkInEntry]) -> list[WalkInEntry]:
    """Playing entries first, then waiting entries by arrival."""
    active = [entry for entry in entries if entry.status.is_active]
    return sorted(
        active,
        key=lambda entry: (
            0 if entry.status is QueueStatus.PLAYING else 1,
            entry.joined_at,
            entry.entry_id,
        ),
    )


def assign_positions(entries: Iterable[WalkInEntry]) -> dict[int, int]:
    """Map entry id to its dense 1-based position among active entries."""
    return {
        entry.entry_id: index
        for index, entry in enumerate(order_active_entries(entries), start=1)
    }


def estimate_queue(
    machine_id: int,
    entries: Iterable[WalkInEntry],
    position: Optional[int] = None,
) -> QueueEstimate:
    """Estimate the wait for ``position`` on one machine.

    The wait is the playing entry's duration plus every waiting entry
    ahead of ``position``; with no position the estimate is for a new
    arrival, i.e. behind everyone. Each entry is assumed to use exactly
    its stated duration.
    """
    ordered = order_active_entries(
        entry for entry in entries if entry.machine_id == machine_id
    )
    playing = [entry for entry in ordered if entry.status is QueueStatus.PLAYING]
    waiting = [entry for entry in ordered if entry.status is QueueStatus.WAITING]
    next_position = len(waiting) + len(playing) + 1

    target = next_position if position is None else position
    estimated_wait = sum(entry.duration_minutes for entry in playing)
    for index, entry in enumerate(ordered, start=1):
        if index >= target:
            break
        if entry.status is QueueStatus.WAITING:
            estimated_wait += entry.duration_minutes

    return QueueEstimate(
        machine_id=machine_id,
        waiting_count=len(waiting),
        playing_count=len(playing),
        estimated_wait_minutes=estimated_wait,
        next_position=next_position,
    )
