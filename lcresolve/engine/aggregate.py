"""Roll classified records up into drilling vs production demand."""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from lcresolve.common.constants import DEFAULT_MIXED_DRILLING_RATIO, DEFAULT_UNKNOWN_DRILLING_RATIO
from lcresolve.common.models import Classification, DrillingSummary, LocationRollup
from lcresolve.engine.matcher import DRILLING_PROJECT_TYPES, PRODUCTION_PROJECT_TYPES

UNASSIGNED_LOCATION = "Unknown"

_DEPARTMENT_BY_ACTIVITY = {"drilling": "Drilling", "production": "Production", "mixed": "Mixed"}


@dataclass(frozen=True)
class AggregationSettings:
    mixed_drilling_ratio: float = DEFAULT_MIXED_DRILLING_RATIO
    unknown_drilling_ratio: float = DEFAULT_UNKNOWN_DRILLING_RATIO

    @classmethod
    def from_config(cls, aggregation_cfg: Mapping) -> "AggregationSettings":
        return cls(
            mixed_drilling_ratio=float(aggregation_cfg["mixed_drilling_ratio"]),
            unknown_drilling_ratio=float(aggregation_cfg["unknown_drilling_ratio"]),
        )


def classify_location_activity(project_types: Iterable[str]) -> str:
    seen = {value.lower() for value in project_types if value}
    has_drilling = bool(seen & DRILLING_PROJECT_TYPES)
    has_production = bool(seen & PRODUCTION_PROJECT_TYPES)
    if has_drilling and has_production:
        return "mixed"
    if has_drilling:
        return "drilling"
    if has_production:
        return "production"
    return "unknown"


def group_by_location(
    records: Iterable[Sequence[Classification]],
) -> dict[str, list[tuple[Classification, float]]]:
    """Group classifications by mapped location, one unit of demand per record.

    A record split across several classifications spreads its unit in
    proportion to the allocation percentages.
    """
    groups: dict[str, list[tuple[Classification, float]]] = defaultdict(list)
    for classifications in records:
        if not classifications:
            continue
        total = sum(max(c.allocation_percentage, 0.0) for c in classifications)
        for classification in classifications:
            if total > 0:
                weight = max(classification.allocation_percentage, 0.0) / total
            else:
                weight = 1.0 / len(classifications)
            location = classification.mapped_location or UNASSIGNED_LOCATION
            groups[location].append((classification, weight))
    return dict(groups)


def summarize_location_groups(
    groups: Mapping[str, Sequence[Classification]],
    settings: AggregationSettings | None = None,
) -> DrillingSummary:
    weighted = {location: [(c, 1.0) for c in items] for location, items in groups.items()}
    return _rollup(weighted, settings or AggregationSettings())


def summarize_records(
    records: Iterable[Sequence[Classification]],
    settings: AggregationSettings | None = None,
) -> DrillingSummary:
    return _rollup(group_by_location(records), settings or AggregationSettings())


def _rollup(
    groups: Mapping[str, Sequence[tuple[Classification, float]]],
    settings: AggregationSettings,
) -> DrillingSummary:
    locations: dict[str, LocationRollup] = {}
    total_drilling = 0.0
    total_production = 0.0
    counts = Counter()

    for location in sorted(groups):
        items = groups[location]
        project_types: set[str] = set()
        for classification, _weight in items:
            project_types |= set(classification.matched_project_types)

        activity = classify_location_activity(project_types)
        demand = sum(weight for _classification, weight in items)

        if activity == "drilling":
            drilling = demand
        elif activity == "production":
            drilling = 0.0
        elif activity == "mixed":
            drilling = demand * settings.mixed_drilling_ratio
        else:
            drilling = demand * settings.unknown_drilling_ratio
        production = demand - drilling

        total_drilling += drilling
        total_production += production
        counts[activity] += 1

        department = _DEPARTMENT_BY_ACTIVITY.get(activity)
        if department is None:
            department = Counter(c.department for c, _ in items).most_common(1)[0][0] if items else "Logistics"
        lc_number = next((c.lc_number for c, _ in items if c.lc_number), None)

        locations[location] = LocationRollup(
            location=location,
            project_type=activity,
            department=department,
            demand=demand,
            drilling_demand=drilling,
            production_demand=production,
            record_count=len(items),
            lc_number=lc_number,
        )

    ratio = total_drilling / total_production if total_production > 0 else 0.0
    return DrillingSummary(
        total_drilling_demand=total_drilling,
        total_production_demand=total_production,
        drilling_location_count=counts["drilling"],
        production_location_count=counts["production"],
        mixed_location_count=counts["mixed"],
        unknown_location_count=counts["unknown"],
        drilling_to_production_ratio=ratio,
        locations=locations,
    )
