"""Turn declared opening hours into fixed-length bookable windows."""
import re
from datetime import date, datetime, time, timedelta
from typing import Optional, Sequence, Tuple

from scheduling.errors import ValidationError

Slot = Tuple[time, time]

_CLOCK_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")

# any fixed date works, only the clock part is used
_ANCHOR = date(2000, 1, 1)


def generate_slots(opening: time, closing: time, unit_minutes: int) -> Tuple[Slot, ...]:
    """
    Slots of exactly ``unit_minutes`` between opening and closing.
    A slot that would overrun closing is dropped, never truncated.
    """
    if unit_minutes <= 0:
        raise ValueError("unit_minutes must be positive")

    start = datetime.combine(_ANCHOR, opening)
    end = datetime.combine(_ANCHOR, closing)
    step = timedelta(minutes=unit_minutes)

    slots = []
    cursor = start
    while cursor + step <= end:
        nxt = cursor + step
        slots.append((cursor.time(), nxt.time()))
        cursor = nxt
    return tuple(slots)


def find_slot(slots: Sequence[Slot], start: time) -> Optional[Slot]:
    for slot in slots:
        if slot[0] == start:
            return slot
    return None


def parse_clock(value, field: str = "start_time") -> time:
    if isinstance(value, time):
        return value
    m = _CLOCK_RE.match((value or "").strip()) if isinstance(value, str) else None
    if not m:
        raise ValidationError(f"Invalid time for {field}. Use HH:MM", field=field)
    return time(int(m.group(1)), int(m.group(2)), int(m.group(3) or 0))


def format_clock(value: time) -> str:
    return value.strftime("%H:%M")


def parse_day(value, field: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat((value or "").strip())
    except (AttributeError, TypeError, ValueError):
        raise ValidationError(f"Invalid {field}. Use YYYY-MM-DD", field=field)
