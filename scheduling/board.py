from typing import List, Optional

from scheduling.filters import FilterQuery, ReservationFilters


class ReservationBoard:
    """
    The owner's working view of a facility's reservations.

    A status change is applied locally first (``apply_optimistic``) and
    replaced later by the authoritative listing (``reconcile_from_source``).
    """

    def __init__(self, query: FilterQuery, facility_id: int, filters: Optional[ReservationFilters] = None):
        self.query = query
        self.facility_id = facility_id
        self.filters = filters or ReservationFilters()
        self.rows: List[dict] = []

    def load(self) -> List[dict]:
        self.rows = self.query.run(self.facility_id, self.filters)
        return self.rows

    def find(self, reservation_id: int) -> Optional[dict]:
        for row in self.rows:
            if row["id"] == reservation_id:
                return row
        return None

    def apply_optimistic(self, reservation_id: int, status: str) -> bool:
        updated = False
        rows = []
        for row in self.rows:
            if row["id"] == reservation_id:
                row = {**row, "status": status}
                updated = True
            rows.append(row)
        self.rows = rows
        return updated

    def reconcile_from_source(self, filters: Optional[ReservationFilters] = None) -> List[dict]:
        if filters is not None:
            self.filters = filters
        return self.load()
