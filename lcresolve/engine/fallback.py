"""Rule-based department inference for records with no ledger match.

Rules are evaluated in a fixed order and the first match wins:

1. Thunder Horse / Mad Dog: Drilling when any activity text mentions
   "drill", otherwise Production.
2. Rig port type or "rig" in the location: Drilling.
3. Supply base (port type or keyword) with cargo/supply activity: Logistics.
4. "drill" in parent event or event: Drilling.
5. "production" in parent event or event: Production.
6. cargo/supply/transport in parent event: Logistics.
7. Operations.

New rules go after the existing ones.
"""

from __future__ import annotations

from typing import Iterable

from lcresolve.common.constants import DEFAULT_DEPARTMENT

DEFAULT_SUPPLY_BASE_KEYWORDS = ("fourchon", "base")
SPLIT_FACILITY_KEYWORDS = ("thunder horse", "mad dog")


def _lower(value: str | None) -> str:
    return (value or "").lower()


class FallbackClassifier:
    def __init__(self, normalizer=None, supply_base_keywords: Iterable[str] = DEFAULT_SUPPLY_BASE_KEYWORDS) -> None:
        self.normalizer = normalizer
        self.supply_base_keywords = tuple(keyword.lower() for keyword in supply_base_keywords)

    def __call__(self, location, parent_event, event, remarks, port_type) -> str:
        return self.classify(location, parent_event, event, remarks, port_type)

    def classify(
        self,
        location: str | None,
        parent_event: str | None,
        event: str | None,
        remarks: str | None,
        port_type: str | None,
    ) -> str:
        raw_location = _lower(location)
        normalized = _lower(self.normalizer.normalize(location)) if self.normalizer else raw_location
        parent = _lower(parent_event)
        activity = _lower(event)
        notes = _lower(remarks)
        port = _lower(port_type).strip()

        if any(key in normalized or key in raw_location for key in SPLIT_FACILITY_KEYWORDS):
            if "drill" in parent or "drill" in activity or "drill" in notes:
                return "Drilling"
            return "Production"

        if port == "rig" or "rig" in raw_location:
            return "Drilling"

        at_base = port == "base" or any(keyword in raw_location for keyword in self.supply_base_keywords)
        if at_base and any(word in parent or word in activity for word in ("cargo", "supply")):
            return "Logistics"

        if "drill" in parent or "drill" in activity:
            return "Drilling"
        if "production" in parent or "production" in activity:
            return "Production"
        if "cargo" in parent or "supply" in parent or "transport" in parent:
            return "Logistics"

        return DEFAULT_DEPARTMENT


_default_classifier = FallbackClassifier()


def classify(location, parent_event, event, remarks, port_type) -> str:
    """Classify with the default keyword set and no location normalisation."""
    return _default_classifier.classify(location, parent_event, event, remarks, port_type)
