"""Charge-code ("Cost Dedicated to") parsing and even percentage splits."""

from __future__ import annotations

import re
from dataclasses import dataclass

_SEPARATOR_RE = re.compile(r"[,/;]")


@dataclass(frozen=True)
class LCShare:
    lc_number: str | None
    percentage: float


def parse_lc_tokens(raw) -> list[str]:
    if raw is None:
        return []
    text = str(raw)
    tokens: list[str] = []
    seen: set[str] = set()
    for part in _SEPARATOR_RE.split(text):
        token = part.strip()
        # Ledger lookups are case-insensitive, so "ab12" and "AB12" are one LC.
        if token and token.upper() not in seen:
            seen.add(token.upper())
            tokens.append(token)
    return tokens


def split_percentages(count: int) -> list[float]:
    if count <= 0:
        return [100.0]
    share = 100.0 / count
    return [share] * count


def parse_lc_allocations(raw) -> list[LCShare]:
    """Split a charge-code field into LC tokens with equal shares of 100.

    Blank input yields a single unallocated share of 100.
    """
    tokens = parse_lc_tokens(raw)
    if not tokens:
        return [LCShare(lc_number=None, percentage=100.0)]
    return [LCShare(lc_number=token, percentage=pct) for token, pct in zip(tokens, split_percentages(len(tokens)))]
