"""Tiered matching of operational records against the ledger."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping, Sequence

from lcresolve.common.constants import DEFAULT_FUZZY_ALLOCATION_PERCENTAGE
from lcresolve.common.models import (
    PROJECT_TYPE_UNKNOWN,
    SOURCE_FALLBACK,
    SOURCE_LEDGER,
    Classification,
    ClassificationError,
    ClassificationResult,
    Confidence,
    LedgerEntry,
    MatchTier,
    OperationalRecord,
    RecordKind,
)
from lcresolve.engine.fallback import FallbackClassifier
from lcresolve.engine.lc_parser import parse_lc_allocations
from lcresolve.engine.ledger_index import LedgerIndex

DRILLING_PROJECT_TYPES = frozenset({"drilling", "completions"})
PRODUCTION_PROJECT_TYPES = frozenset({"production", "maintenance"})

DepartmentClassifier = Callable[[str | None, str | None, str | None, str | None, str | None], str]


@dataclass(frozen=True)
class MatchSettings:
    fuzzy_allocation_percentage: float = DEFAULT_FUZZY_ALLOCATION_PERCENTAGE

    @classmethod
    def from_config(cls, matching_cfg: Mapping) -> "MatchSettings":
        return cls(fuzzy_allocation_percentage=float(matching_cfg["fuzzy_allocation_percentage"]))


def determine_department(entries: Sequence[LedgerEntry]) -> str:
    if not entries:
        return "Logistics"

    departments = [entry.department for entry in entries if entry.department]
    project_types = {entry.project_type.lower() for entry in entries if entry.project_type}

    if "Drilling" in departments or project_types & DRILLING_PROJECT_TYPES:
        return "Drilling"
    if "Production" in departments or project_types & PRODUCTION_PROJECT_TYPES:
        return "Production"

    distinct = sorted(set(departments))
    if len(distinct) == 1:
        return distinct[0]
    if len(distinct) > 1:
        return "Mixed"
    return "Logistics"


def _project_types(entries: Sequence[LedgerEntry]) -> frozenset[str]:
    return frozenset(entry.project_type for entry in entries if entry.project_type)


class RecordMatcher:
    """Resolves one record to classifications, highest-confidence tier first.

    Tiers: exact LC, canonical location, fuzzy location, rule fallback.
    Only the exact-LC tier can return more than one classification.
    """

    def __init__(
        self,
        index: LedgerIndex,
        classifier: DepartmentClassifier | None = None,
        settings: MatchSettings | None = None,
    ) -> None:
        self.index = index
        self.classifier = classifier or FallbackClassifier(normalizer=index.normalizer)
        self.settings = settings or MatchSettings()

    def classify_row(self, row: Mapping) -> ClassificationResult:
        if not isinstance(row, Mapping):
            return ClassificationResult(
                error=ClassificationError(record_id=None, reason=f"record is not a mapping: {type(row).__name__}")
            )
        record = OperationalRecord.from_row(row)
        return ClassificationResult(classifications=tuple(self.match(record)))

    def match(self, record: OperationalRecord) -> list[Classification]:
        canonical = self.index.normalizer.normalize(record.location)

        classifications = self._match_lc(record)
        if classifications:
            return classifications

        classification = self._match_location(canonical)
        if classification is None:
            classification = self._match_fuzzy(canonical)
        if classification is None:
            classification = self._fallback(record)
        return [classification]

    def _match_lc(self, record: OperationalRecord) -> list[Classification]:
        if not record.charge_code:
            return []
        shares = parse_lc_allocations(record.charge_code)
        hits = {share.lc_number: self.index.lookup_lc(share.lc_number) for share in shares if share.lc_number}
        if not any(hits.values()):
            return []

        out: list[Classification] = []
        for share in shares:
            entries = hits.get(share.lc_number, ())
            if not entries:
                out.append(self._fallback(record, lc_number=share.lc_number, percentage=share.percentage))
                continue
            primary = entries[0]
            out.append(
                Classification(
                    lc_number=primary.lc_number,
                    department=determine_department(entries),
                    project_type=primary.project_type or PROJECT_TYPE_UNKNOWN,
                    allocation_percentage=share.percentage,
                    mapped_location=primary.rig_reference or record.location,
                    confidence=Confidence.HIGH,
                    source=SOURCE_LEDGER,
                    is_special_case=True,
                    tier=MatchTier.EXACT_LC,
                    matched_entry=primary,
                    matched_project_types=_project_types(entries),
                )
            )
        return out

    def _match_location(self, canonical: str) -> Classification | None:
        entries = self.index.lookup_location(canonical)
        if not entries:
            return None
        distinct = len(set(entries))
        percentage = 100.0 / distinct if distinct > 1 else 100.0
        return self._ledger_location_classification(
            canonical, entries, percentage, Confidence.MEDIUM, MatchTier.LOCATION
        )

    def _match_fuzzy(self, canonical: str) -> Classification | None:
        needle = canonical.lower()
        if not needle:
            return None
        for key in self.index.location_keys():
            candidate = key.lower()
            if needle in candidate or candidate in needle:
                return self._ledger_location_classification(
                    key,
                    self.index.lookup_location(key),
                    self.settings.fuzzy_allocation_percentage,
                    Confidence.LOW,
                    MatchTier.FUZZY,
                )
        return None

    def _ledger_location_classification(
        self,
        location: str,
        entries: Sequence[LedgerEntry],
        percentage: float,
        confidence: Confidence,
        tier: MatchTier,
    ) -> Classification:
        primary = entries[0]
        return Classification(
            lc_number=primary.lc_number,
            department=determine_department(entries),
            project_type=primary.project_type or PROJECT_TYPE_UNKNOWN,
            allocation_percentage=percentage,
            mapped_location=location,
            confidence=confidence,
            source=SOURCE_LEDGER,
            is_special_case=True,
            tier=tier,
            matched_entry=primary,
            matched_project_types=_project_types(entries),
        )

    def _fallback(
        self,
        record: OperationalRecord,
        *,
        lc_number: str | None = None,
        percentage: float = 100.0,
    ) -> Classification:
        if record.kind is RecordKind.VOYAGE_EVENT:
            department = self.classifier(
                record.location, record.parent_event, record.event, record.remarks, record.port_type
            )
        else:
            department = self.classifier(record.location, None, None, None, None)
        return Classification(
            lc_number=lc_number,
            department=department,
            project_type=PROJECT_TYPE_UNKNOWN,
            allocation_percentage=percentage,
            mapped_location=record.location,
            confidence=Confidence.LOW,
            source=SOURCE_FALLBACK,
            is_special_case=False,
            tier=MatchTier.FALLBACK,
        )
