"""Which optional columns exist in this deployment.

Some deployments run behind on migrations. Rather than discovering that
through failed writes, the columns are inspected once at startup and the
resulting descriptor is handed to every component that touches them.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Tuple

from sqlalchemy import inspect, text

from scheduling.errors import SchemaDriftError

log = logging.getLogger(__name__)

OPTIONAL_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "reservation_settings": ("auto_message_enabled", "auto_message_text"),
    "reservations": ("customer_name",),
}


@dataclass(frozen=True)
class SchemaCapabilities:
    version: str = "head"
    # "table.column" entries that are absent
    missing: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def full(cls, version: str = "head") -> "SchemaCapabilities":
        return cls(version=version)

    @classmethod
    def without(cls, *qualified: str, version: str = "partial") -> "SchemaCapabilities":
        return cls(version=version, missing=frozenset(qualified))

    @classmethod
    def detect(cls, engine) -> "SchemaCapabilities":
        insp = inspect(engine)
        missing = set()
        for table, columns in OPTIONAL_COLUMNS.items():
            present = set()
            if insp.has_table(table):
                present = {c["name"] for c in insp.get_columns(table)}
            for column in columns:
                if column not in present:
                    missing.add(f"{table}.{column}")

        version = "unversioned"
        if insp.has_table("alembic_version"):
            with engine.connect() as conn:
                row = conn.execute(text("SELECT version_num FROM alembic_version")).first()
                if row:
                    version = row[0]

        caps = cls(version=version, missing=frozenset(missing))
        if missing:
            log.warning("Schema %s lacks optional columns: %s", version, ", ".join(sorted(missing)))
        return caps

    def has(self, table: str, column: str) -> bool:
        return f"{table}.{column}" not in self.missing

    def require(self, table: str, columns: Iterable[str]) -> None:
        absent = [c for c in columns if not self.has(table, c)]
        if absent:
            raise SchemaDriftError(table, absent)

    def optional_columns(self, table: str) -> Tuple[str, ...]:
        return OPTIONAL_COLUMNS.get(table, ())
