"""
Free-slot computation over attendee busy intervals.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from .models import BusyMap, TimeWindow

logger = logging.getLogger(__name__)


def compute_free_slots(window: TimeWindow, busy_map: BusyMap, slot_minutes: int = 30) -> List[TimeWindow]:
    """Return fixed-size slots inside `window` that no attendee is busy for.

    Stepping runs while the slot start is before `window.end`, so the last
    slot may extend past the end of the window.
    """
    if slot_minutes <= 0:
        raise ValueError(f'slot_minutes must be positive, got {slot_minutes}')

    step = timedelta(minutes=slot_minutes)
    busy = [interval for intervals in busy_map.values() for interval in intervals]

    slots = []
    t = window.start
    while t < window.end:
        slot = TimeWindow(t, t + step)
        if not any(slot.overlaps(b) for b in busy):
            slots.append(slot)
        t += step
    return slots


def pick_contiguous_span(slots: Sequence[TimeWindow], duration_minutes: int) -> Optional[TimeWindow]:
    """Stitch adjacent slots into the first run long enough for the meeting.

    First fit, not best fit. The returned window is exactly
    `duration_minutes` long, starting where the qualifying run starts.
    """
    if not slots:
        return None

    needed = timedelta(minutes=duration_minutes)
    acc_start, acc_end = slots[0].start, slots[0].end

    for slot in slots[1:]:
        if slot.start == acc_end:
            acc_end = slot.end
            continue
        if acc_end - acc_start >= needed:
            break
        acc_start, acc_end = slot.start, slot.end

    if acc_end - acc_start >= needed:
        return TimeWindow(acc_start, acc_start + needed)
    return None


def grid_minutes(duration_minutes: int) -> int:
    """Probe grid used when planning a meeting of the given length."""
    return min(30, max(5, duration_minutes // 6))


def _parse_google_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


def busy_map_from_freebusy(calendars: Dict[str, Any]) -> BusyMap:
    """Convert the `calendars` member of a freeBusy response into a BusyMap."""
    busy_map: BusyMap = {}
    for calendar_id, data in (calendars or {}).items():
        for error in data.get('errors', []):
            logger.warning('Free/busy unavailable for %s: %s', calendar_id, error.get('reason', 'unknown'))

        intervals = []
        for period in data.get('busy', []):
            start = _parse_google_time(period['start'])
            end = _parse_google_time(period['end'])
            if start < end:
                intervals.append(TimeWindow(start, end))
        busy_map[calendar_id] = intervals
    return busy_map
