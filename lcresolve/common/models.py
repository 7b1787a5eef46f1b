"""Data models shared by the engine and the pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Mapping


class RecordKind(str, Enum):
    VOYAGE_EVENT = "voyage_event"
    MANIFEST_LINE = "manifest_line"


class MatchTier(str, Enum):
    EXACT_LC = "exact_lc"
    LOCATION = "location_match"
    FUZZY = "fuzzy_match"
    FALLBACK = "no_match"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SOURCE_LEDGER = "ledger"
SOURCE_FALLBACK = "fallback"
PROJECT_TYPE_UNKNOWN = "unknown"

_LEDGER_KEYS = {
    "lc_number": ("lcNumber", "LC Number", "lc_number"),
    "rig_location": ("rigLocation", "Rig Location", "rig_location"),
    "location_reference": ("locationReference", "Location Reference", "location_reference"),
    "rig_reference": ("rigReference", "Rig Reference", "rig_reference"),
    "project_type": ("projectType", "Project Type", "project_type"),
    "department": ("department", "Department"),
    "allocated_days": ("allocatedDays", "Alloc (days)", "Total Allocated Days", "allocated_days"),
    "month_year": ("monthYear", "Month-Year", "month_year"),
}


def _first_present(row: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip() != "":
            return value
    return None


def _text_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _float_or_none(value: Any) -> float | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class LedgerEntry:
    lc_number: str | None
    rig_location: str | None = None
    location_reference: str | None = None
    project_type: str | None = None
    department: str | None = None
    rig_reference: str | None = None
    allocated_days: float | None = None
    month_year: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LedgerEntry":
        values = {name: _first_present(row, keys) for name, keys in _LEDGER_KEYS.items()}
        lc_number = _text_or_none(values["lc_number"])
        return cls(
            lc_number=lc_number.upper() if lc_number else None,
            rig_location=_text_or_none(values["rig_location"]),
            location_reference=_text_or_none(values["location_reference"]),
            project_type=_text_or_none(values["project_type"]),
            department=_text_or_none(values["department"]),
            rig_reference=_text_or_none(values["rig_reference"]),
            allocated_days=_float_or_none(values["allocated_days"]),
            month_year=_text_or_none(values["month_year"]),
        )

    @property
    def location_text(self) -> str | None:
        return self.rig_location or self.location_reference

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class OperationalRecord:
    """A voyage event or manifest line, tagged by ``kind``."""

    kind: RecordKind
    record_id: str | None
    vessel: str | None = None
    location: str | None = None
    parent_event: str | None = None
    event: str | None = None
    remarks: str | None = None
    port_type: str | None = None
    charge_code: str | None = None
    hours: Any = None
    started_at: Any = None
    ended_at: Any = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "OperationalRecord":
        record_id = row.get("id")
        record_id = None if record_id is None else str(record_id)
        if "offshoreLocation" in row or "costCode" in row or "transporter" in row:
            return cls(
                kind=RecordKind.MANIFEST_LINE,
                record_id=record_id,
                vessel=_text_or_none(row.get("transporter")),
                location=_text_or_none(row.get("offshoreLocation")),
                charge_code=_text_or_none(row.get("costCode")),
            )
        return cls(
            kind=RecordKind.VOYAGE_EVENT,
            record_id=record_id,
            vessel=_text_or_none(row.get("vessel")),
            location=_text_or_none(row.get("location")),
            parent_event=_text_or_none(row.get("parentEvent")),
            event=_text_or_none(row.get("event")),
            remarks=_text_or_none(row.get("remarks")),
            port_type=_text_or_none(row.get("portType")),
            charge_code=_text_or_none(row.get("costDedicatedTo")),
            hours=row.get("hours"),
            started_at=row.get("from"),
            ended_at=row.get("to"),
        )


@dataclass(frozen=True)
class Classification:
    lc_number: str | None
    department: str
    project_type: str
    allocation_percentage: float
    mapped_location: str | None
    confidence: Confidence
    source: str
    is_special_case: bool
    tier: MatchTier
    matched_entry: LedgerEntry | None = None
    matched_project_types: frozenset[str] = field(default_factory=frozenset)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lcNumber": self.lc_number,
            "department": self.department,
            "projectType": self.project_type,
            "allocationPercentage": self.allocation_percentage,
            "mappedLocation": self.mapped_location,
            "confidence": self.confidence.value,
            "source": self.source,
            "isSpecialCase": self.is_special_case,
            "tier": self.tier.value,
        }


@dataclass(frozen=True)
class ClassificationError:
    record_id: str | None
    reason: str


@dataclass(frozen=True)
class ClassificationResult:
    """Either classifications for one record or the error that prevented them."""

    classifications: tuple[Classification, ...] = ()
    error: ClassificationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def primary(self) -> Classification | None:
        return self.classifications[0] if self.classifications else None


@dataclass(frozen=True)
class MatchAttempt:
    record_id: str | None
    run_id: str
    tier: str | None
    lc_number: str | None
    matched_entry: dict[str, Any] | None
    error: str | None
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LocationRollup:
    location: str
    project_type: str
    department: str
    demand: float
    drilling_demand: float
    production_demand: float
    record_count: int
    lc_number: str | None = None


@dataclass(frozen=True)
class DrillingSummary:
    total_drilling_demand: float
    total_production_demand: float
    drilling_location_count: int
    production_location_count: int
    mixed_location_count: int
    unknown_location_count: int
    drilling_to_production_ratio: float
    locations: dict[str, LocationRollup] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_drilling_demand": round(self.total_drilling_demand, 4),
            "total_production_demand": round(self.total_production_demand, 4),
            "drilling_location_count": self.drilling_location_count,
            "production_location_count": self.production_location_count,
            "mixed_location_count": self.mixed_location_count,
            "unknown_location_count": self.unknown_location_count,
            "drilling_to_production_ratio": round(self.drilling_to_production_ratio, 4),
            "locations": {key: asdict(value) for key, value in sorted(self.locations.items())},
        }
