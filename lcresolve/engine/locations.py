"""Canonical offshore location names."""

from __future__ import annotations

import re
from typing import Iterable

_WHITESPACE_RE = re.compile(r"\s+")


def _fold(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value.strip()).lower()


class LocationNormalizer:
    """Maps free-text locations onto a closed set of facility names.

    Aliases match as case-insensitive substrings and the longest alias wins;
    short codes only match the whole string. Unknown input comes back trimmed.
    """

    def __init__(self, facilities: Iterable[dict]) -> None:
        self._names: list[str] = []
        self._aliases: list[tuple[str, str]] = []
        self._codes: dict[str, str] = {}
        for facility in facilities:
            name = facility["name"]
            self._names.append(name)
            for alias in [name, *(facility.get("aliases") or [])]:
                self._aliases.append((_fold(alias), name))
            for code in facility.get("codes") or []:
                self._codes[_fold(code)] = name
        # Longest alias first; ties keep config order.
        self._aliases.sort(key=lambda item: -len(item[0]))
        self._known = frozenset(self._names)

    @classmethod
    def from_config(cls, locations_cfg: dict) -> "LocationNormalizer":
        return cls(locations_cfg["facilities"])

    @property
    def reference_names(self) -> tuple[str, ...]:
        return tuple(self._names)

    def is_known(self, name: str | None) -> bool:
        return name in self._known

    def normalize(self, raw: str | None) -> str:
        if raw is None:
            return ""
        trimmed = str(raw).strip()
        if not trimmed:
            return ""
        folded = _fold(trimmed)
        if folded in self._codes:
            return self._codes[folded]
        for alias, name in self._aliases:
            if alias and alias in folded:
                return name
        return trimmed
