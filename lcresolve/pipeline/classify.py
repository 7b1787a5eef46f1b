"""Request-time classification and demand summary stages."""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Callable, Sequence

from lcresolve.common.config_loader import ConfigBundle
from lcresolve.common.fs import write_json
from lcresolve.common.models import ClassificationResult, LedgerEntry
from lcresolve.engine.aggregate import AggregationSettings, summarize_records
from lcresolve.engine.fallback import FallbackClassifier
from lcresolve.engine.ledger_index import LedgerIndex
from lcresolve.engine.locations import LocationNormalizer
from lcresolve.engine.matcher import MatchSettings, RecordMatcher


def build_matcher_factory(bundle: ConfigBundle) -> Callable[[Sequence[LedgerEntry]], RecordMatcher]:
    normalizer = LocationNormalizer.from_config(bundle.locations)
    classifier = FallbackClassifier(
        normalizer=normalizer,
        supply_base_keywords=bundle.locations["supply_base_keywords"],
    )
    settings = MatchSettings.from_config(bundle.matching)

    def factory(entries: Sequence[LedgerEntry]) -> RecordMatcher:
        return RecordMatcher(LedgerIndex(entries, normalizer), classifier, settings)

    return factory


def match_statistics(results: Sequence[ClassificationResult]) -> dict:
    tiers: Counter = Counter()
    confidence: Counter = Counter()
    errors = 0
    for result in results:
        if not result.ok or result.primary is None:
            errors += 1
            continue
        tiers[result.primary.tier.value] += 1
        confidence[result.primary.confidence.value] += 1
    total = len(results)
    return {
        "total": total,
        "errors": errors,
        "tiers": dict(sorted(tiers.items())),
        "confidence": dict(sorted(confidence.items())),
        "ledger_share_percent": 0.0
        if total == 0
        else round(sum(n for tier, n in tiers.items() if tier != "no_match") / total * 100, 2),
    }


def classify_rows(rows: Sequence[dict], matcher: RecordMatcher) -> list[ClassificationResult]:
    return [matcher.classify_row(row) for row in rows]


def run_classify(rows: Sequence[dict], matcher: RecordMatcher, out_path: Path) -> dict:
    results = classify_rows(rows, matcher)
    annotated = []
    for row, result in zip(rows, results):
        out = dict(row) if isinstance(row, dict) else {"value": row}
        out["classifications"] = [c.to_dict() for c in result.classifications]
        if result.error is not None:
            out["classificationError"] = result.error.reason
        annotated.append(out)

    payload = {"statistics": match_statistics(results), "records": annotated}
    write_json(out_path, payload)
    return payload


def run_summarize(
    rows: Sequence[dict],
    matcher: RecordMatcher,
    settings: AggregationSettings,
    out_path: Path,
) -> dict:
    results = classify_rows(rows, matcher)
    summary = summarize_records((result.classifications for result in results if result.ok), settings)
    payload = {"statistics": match_statistics(results), "summary": summary.to_dict()}
    write_json(out_path, payload)
    return payload
