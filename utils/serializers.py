from datetime import date, datetime, time

from scheduling.slots import format_clock


def _value(v):
    if isinstance(v, datetime):
        return v.isoformat()
    if isinstance(v, date):
        return v.isoformat()
    if isinstance(v, time):
        return format_clock(v)
    return v


def reservation_json(row: dict) -> dict:
    # rows from a drifted schema simply lack customer_name
    return {k: _value(v) for k, v in row.items()}


def reservations_json(rows) -> list:
    return [reservation_json(r) for r in rows or []]
