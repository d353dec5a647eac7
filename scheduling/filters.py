from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from scheduling.errors import ValidationError
from scheduling.slots import parse_day

FILTER_STATUSES = ("all", "pending", "confirmed")


@dataclass(frozen=True)
class ReservationFilters:
    date: Optional[date] = None
    status: str = "all"

    def __post_init__(self):
        if self.status not in FILTER_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(FILTER_STATUSES)}", field="status")

    @classmethod
    def from_args(cls, args) -> "ReservationFilters":
        day = str(args.get("date") or "").strip()
        status = str(args.get("status") or "all").strip().lower()
        return cls(date=parse_day(day) if day else None, status=status)

    def to_dict(self):
        return {"date": self.date.isoformat() if self.date else None, "status": self.status}


class FilterQuery:
    """Owner-facing listing; drift handling lives in the repository."""

    def __init__(self, repository):
        self.repository = repository

    def run(self, facility_id: int, filters: Optional[ReservationFilters] = None) -> List[dict]:
        filters = filters or ReservationFilters()
        return self.repository.list(facility_id, date=filters.date, status=filters.status)
