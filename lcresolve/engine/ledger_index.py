"""Read-only lookup structures over the cost-allocation ledger."""

from __future__ import annotations

from collections import defaultdict
from types import MappingProxyType
from typing import Iterable, Mapping

from lcresolve.common.models import LedgerEntry
from lcresolve.engine.locations import LocationNormalizer


class LedgerIndex:
    """LC-number and canonical-location lookups, built once per run."""

    def __init__(self, entries: Iterable[LedgerEntry], normalizer: LocationNormalizer) -> None:
        by_lc: dict[str, list[LedgerEntry]] = defaultdict(list)
        by_location: dict[str, list[LedgerEntry]] = defaultdict(list)
        count = 0

        for entry in entries:
            count += 1
            if entry.lc_number and entry.department:
                by_lc[entry.lc_number.upper()].append(entry)

            location = normalizer.normalize(entry.location_text)
            if normalizer.is_known(location):
                by_location[location].append(entry)

        self.normalizer = normalizer
        self.entry_count = count
        self._by_lc: Mapping[str, tuple[LedgerEntry, ...]] = MappingProxyType(
            {key: tuple(value) for key, value in by_lc.items()}
        )
        self._by_location: Mapping[str, tuple[LedgerEntry, ...]] = MappingProxyType(
            {key: tuple(value) for key, value in by_location.items()}
        )

    @property
    def by_lc(self) -> Mapping[str, tuple[LedgerEntry, ...]]:
        return self._by_lc

    @property
    def by_location(self) -> Mapping[str, tuple[LedgerEntry, ...]]:
        return self._by_location

    def lookup_lc(self, lc_number: str | None) -> tuple[LedgerEntry, ...]:
        if not lc_number:
            return ()
        return self._by_lc.get(lc_number.strip().upper(), ())

    def lookup_location(self, canonical_location: str | None) -> tuple[LedgerEntry, ...]:
        if not canonical_location:
            return ()
        return self._by_location.get(canonical_location, ())

    def location_keys(self) -> tuple[str, ...]:
        return tuple(self._by_location)


def build_ledger_index(rows: Iterable[Mapping], normalizer: LocationNormalizer) -> LedgerIndex:
    return LedgerIndex((LedgerEntry.from_row(row) for row in rows), normalizer)
