import logging
import re
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import delete, insert, select, update

from models.reservation_setting import ReservationSetting
from models.seat import Seat
from scheduling.errors import SchemaDriftError, ValidationError
from scheduling.schema import SchemaCapabilities

log = logging.getLogger(__name__)

ALLOWED_SLOT_UNITS = (15, 30, 45, 60, 90, 120)
DAYS_AHEAD_RANGE = (1, 365)
CAPACITY_RANGE = (1, 1000)
AUTO_MESSAGE_MAX_LENGTH = 500
SEAT_CODE_MAX_LENGTH = 32

AUTO_MESSAGE_FIELDS = ("auto_message_enabled", "auto_message_text")
BOOL_FIELDS = ("enabled", "auto_confirm", "auto_message_enabled")
SETTING_FIELDS = (
    "enabled",
    "slot_unit_minutes",
    "allowed_days_ahead",
    "capacity_per_slot",
    "auto_confirm",
    "auto_message_enabled",
    "auto_message_text",
)

_INT_RE = re.compile(r"^\s*-?\d+\s*$")


@dataclass(frozen=True)
class SettingValues:
    facility_id: int
    enabled: bool = False
    slot_unit_minutes: int = 60
    allowed_days_ahead: int = 90
    capacity_per_slot: int = 10
    auto_confirm: bool = True
    auto_message_enabled: bool = False
    auto_message_text: Optional[str] = None
    persisted: bool = False

    def to_dict(self):
        return asdict(self)

    def default_message(self) -> Optional[str]:
        if self.auto_message_enabled and self.auto_message_text:
            return self.auto_message_text
        return None


@dataclass(frozen=True)
class SettingsSaveResult:
    settings: SettingValues
    degraded: bool = False
    omitted_fields: Tuple[str, ...] = ()


def _as_bool(value, field):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValidationError(f"{field} must be true or false", field=field)


def _as_int(value, field):
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _INT_RE.match(value):
        return int(value)
    raise ValidationError(f"{field} must be an integer", field=field)


def _in_range(value, bounds, field):
    low, high = bounds
    if not low <= value <= high:
        raise ValidationError(f"{field} must be between {low} and {high}", field=field)
    return value


def validate_setting_fields(fields: dict) -> dict:
    """Normalize owner-supplied settings; raises ValidationError on the first bad field."""
    unknown = sorted(set(fields) - set(SETTING_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown setting: {unknown[0]}", field=unknown[0])

    clean = {}
    for name in BOOL_FIELDS:
        if name in fields:
            clean[name] = _as_bool(fields[name], name)

    if "slot_unit_minutes" in fields:
        unit = _as_int(fields["slot_unit_minutes"], "slot_unit_minutes")
        if unit not in ALLOWED_SLOT_UNITS:
            allowed = ", ".join(str(u) for u in ALLOWED_SLOT_UNITS)
            raise ValidationError(f"slot_unit_minutes must be one of {allowed}", field="slot_unit_minutes")
        clean["slot_unit_minutes"] = unit

    if "allowed_days_ahead" in fields:
        days = _as_int(fields["allowed_days_ahead"], "allowed_days_ahead")
        clean["allowed_days_ahead"] = _in_range(days, DAYS_AHEAD_RANGE, "allowed_days_ahead")

    if "capacity_per_slot" in fields:
        cap = _as_int(fields["capacity_per_slot"], "capacity_per_slot")
        clean["capacity_per_slot"] = _in_range(cap, CAPACITY_RANGE, "capacity_per_slot")

    if "auto_message_text" in fields:
        text = fields["auto_message_text"]
        if text is not None and not isinstance(text, str):
            raise ValidationError("auto_message_text must be text", field="auto_message_text")
        text = (text or "").strip() or None
        if text and len(text) > AUTO_MESSAGE_MAX_LENGTH:
            raise ValidationError(
                f"auto_message_text must be at most {AUTO_MESSAGE_MAX_LENGTH} characters",
                field="auto_message_text",
            )
        clean["auto_message_text"] = text

    return clean


def normalize_seat_codes(codes: Iterable[str]) -> List[str]:
    seen = []
    for code in codes or []:
        if not isinstance(code, str):
            raise ValidationError("seat codes must be text", field="seats")
        code = code.strip()
        if not code:
            continue
        if len(code) > SEAT_CODE_MAX_LENGTH:
            raise ValidationError(
                f"seat code must be at most {SEAT_CODE_MAX_LENGTH} characters", field="seats"
            )
        if code not in seen:
            seen.append(code)
    return seen


class ReservationSettingsStore:
    """Per-facility reservation settings and the facility's seat list."""

    def __init__(self, session, capabilities: SchemaCapabilities):
        self.session = session
        self.capabilities = capabilities
        self.table = ReservationSetting.__table__

    def _readable_columns(self):
        return [
            self.table.c[name]
            for name in SETTING_FIELDS
            if self.capabilities.has(self.table.name, name)
        ]

    def get(self, facility_id: int) -> SettingValues:
        row = self.session.execute(
            select(*self._readable_columns()).where(self.table.c.facility_id == facility_id)
        ).first()
        if row is None:
            return SettingValues(facility_id=facility_id)
        values = dict(row._mapping)
        return SettingValues(facility_id=facility_id, persisted=True, **values)

    def lock(self, facility_id: int) -> None:
        """Row lock on the settings row for the rest of the transaction (no-op on SQLite)."""
        self.session.execute(
            select(self.table.c.id)
            .where(self.table.c.facility_id == facility_id)
            .with_for_update()
        ).first()

    def upsert(self, facility_id: int, fields: dict) -> SettingsSaveResult:
        changes = validate_setting_fields(fields or {})
        current = self.get(facility_id)
        merged = replace(current, **changes)

        # auto-message columns are written only when the owner touched them
        values = {
            name: getattr(merged, name)
            for name in SETTING_FIELDS
            if name not in AUTO_MESSAGE_FIELDS or name in changes
        }

        try:
            self._write(facility_id, values, exists=current.persisted)
        except SchemaDriftError as exc:
            if not set(exc.columns) <= set(AUTO_MESSAGE_FIELDS):
                raise
            log.warning(
                "Facility %s settings saved without %s (schema %s)",
                facility_id, ", ".join(AUTO_MESSAGE_FIELDS), self.capabilities.version,
            )
            trimmed = {k: v for k, v in values.items() if k not in AUTO_MESSAGE_FIELDS}
            self._write(facility_id, trimmed, exists=current.persisted)
            saved = self.get(facility_id)
            return SettingsSaveResult(settings=saved, degraded=True, omitted_fields=AUTO_MESSAGE_FIELDS)

        return SettingsSaveResult(settings=self.get(facility_id))

    def _write(self, facility_id: int, values: dict, exists: bool) -> None:
        self.capabilities.require(self.table.name, [k for k in values if k in AUTO_MESSAGE_FIELDS])
        if exists:
            stmt = (
                update(self.table)
                .where(self.table.c.facility_id == facility_id)
                .values(updated_at=datetime.utcnow(), **values)
            )
        else:
            stmt = insert(self.table).values(facility_id=facility_id, **values)
        self.session.execute(stmt)
        self.session.commit()

    # ---------- seats ----------

    def list_seats(self, facility_id: int) -> List[str]:
        rows = self.session.execute(
            select(Seat.seat_code).where(Seat.facility_id == facility_id).order_by(Seat.id.asc())
        ).scalars()
        return list(rows)

    def replace_seats(self, facility_id: int, codes: Iterable[str]) -> List[str]:
        """Delete every seat of the facility, then insert ``codes``. Last writer wins."""
        cleaned = normalize_seat_codes(codes)
        self.session.execute(delete(Seat).where(Seat.facility_id == facility_id))
        for code in cleaned:
            self.session.add(Seat(facility_id=facility_id, seat_code=code))
        self.session.commit()
        return cleaned
