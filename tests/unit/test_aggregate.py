import pytest

from lcresolve.common.models import Classification, Confidence, MatchTier
from lcresolve.engine.aggregate import (
    AggregationSettings,
    classify_location_activity,
    group_by_location,
    summarize_location_groups,
    summarize_records,
)


def _classification(location, project_types=(), percentage=100.0, department="Logistics") -> Classification:
    ledger = bool(project_types)
    return Classification(
        lc_number="1000" if ledger else None,
        department=department,
        project_type=next(iter(project_types), "unknown"),
        allocation_percentage=percentage,
        mapped_location=location,
        confidence=Confidence.HIGH if ledger else Confidence.LOW,
        source="ledger" if ledger else "fallback",
        is_special_case=ledger,
        tier=MatchTier.EXACT_LC if ledger else MatchTier.FALLBACK,
        matched_project_types=frozenset(project_types),
    )


def test_classify_location_activity():
    assert classify_location_activity(["Drilling", "Maintenance"]) == "mixed"
    assert classify_location_activity(["Completions"]) == "drilling"
    assert classify_location_activity(["production"]) == "production"
    assert classify_location_activity(["OperatorSharing"]) == "unknown"
    assert classify_location_activity([]) == "unknown"


def test_summarize_location_groups_applies_split_ratios():
    groups = {
        "Rig A": [_classification("Rig A", ["Drilling"])] * 3,
        "Platform B": [_classification("Platform B", ["Production"])] * 2,
        "Hub C": [_classification("Hub C", ["Drilling"]), _classification("Hub C", ["Maintenance"])] + [
            _classification("Hub C")
        ] * 3,
        "Dock D": [_classification("Dock D")] * 2,
    }
    summary = summarize_location_groups(groups)

    assert summary.total_drilling_demand == pytest.approx(3 + 5 * 0.6 + 2 * 0.5)
    assert summary.total_production_demand == pytest.approx(2 + 5 * 0.4 + 2 * 0.5)
    assert summary.drilling_location_count == 1
    assert summary.production_location_count == 1
    assert summary.mixed_location_count == 1
    assert summary.unknown_location_count == 1
    assert summary.drilling_to_production_ratio == pytest.approx(7 / 5)
    assert summary.locations["Hub C"].project_type == "mixed"
    assert summary.locations["Hub C"].department == "Mixed"
    assert summary.locations["Dock D"].department == "Logistics"


def test_ratio_overrides_are_honoured():
    groups = {"Hub": [_classification("Hub", ["Drilling", "Production"])] * 10}
    summary = summarize_location_groups(groups, AggregationSettings(mixed_drilling_ratio=0.7))
    assert summary.total_drilling_demand == pytest.approx(7.0)
    assert summary.total_production_demand == pytest.approx(3.0)


def test_ratio_is_zero_without_production_demand():
    summary = summarize_location_groups({"Rig": [_classification("Rig", ["Drilling"])]})
    assert summary.total_production_demand == 0
    assert summary.drilling_to_production_ratio == 0.0


def test_split_records_are_not_double_counted():
    records = [
        [_classification("Rig A", ["Drilling"], 50.0), _classification("Platform B", ["Production"], 50.0)],
        [_classification("Hub C", ["Drilling", "Production"], 30.0)],
        [_classification(None)],
        [_classification("Rig A", ["Drilling"], 100.0 / 3)] * 3,
    ]
    summary = summarize_records(records)

    assert summary.total_drilling_demand + summary.total_production_demand == pytest.approx(len(records))
    assert summary.locations["Rig A"].demand == pytest.approx(1.5)
    assert summary.locations["Platform B"].demand == pytest.approx(0.5)
    assert "Unknown" in summary.locations


def test_group_by_location_skips_empty_records():
    assert group_by_location([[], []]) == {}


def test_summary_to_dict_is_sorted_and_rounded():
    summary = summarize_location_groups(
        {"b": [_classification("b", ["Drilling"])], "a": [_classification("a", ["Production"])] * 3}
    )
    payload = summary.to_dict()
    assert list(payload["locations"]) == ["a", "b"]
    assert payload["drilling_to_production_ratio"] == round(1 / 3, 4)
