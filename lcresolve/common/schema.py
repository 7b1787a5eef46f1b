"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from lcresolve.common.errors import ConfigError


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    if not isinstance(obj, dict):
        raise ConfigError(f"{ctx} must be a mapping")
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_number(value, ctx: str, *, minimum: float, maximum: float | None = None) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{ctx} must be a number")
    if value < minimum or (maximum is not None and value > maximum):
        bound = f"[{minimum}, {maximum}]" if maximum is not None else f">= {minimum}"
        raise ConfigError(f"{ctx} must be within {bound}")


def validate_engine_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    sections = {"matching", "aggregation", "backfill"}
    _assert_required_keys(cfg, sections, "engine config")
    _assert_no_unknown_keys(cfg, sections, "engine config", allow_unknown)

    matching_keys = {"fuzzy_allocation_percentage"}
    _assert_required_keys(cfg["matching"], matching_keys, "matching")
    _assert_no_unknown_keys(cfg["matching"], matching_keys, "matching", allow_unknown)
    _assert_number(
        cfg["matching"]["fuzzy_allocation_percentage"],
        "matching.fuzzy_allocation_percentage",
        minimum=0,
        maximum=100,
    )

    aggregation_keys = {"mixed_drilling_ratio", "unknown_drilling_ratio"}
    _assert_required_keys(cfg["aggregation"], aggregation_keys, "aggregation")
    _assert_no_unknown_keys(cfg["aggregation"], aggregation_keys, "aggregation", allow_unknown)
    for key in sorted(aggregation_keys):
        _assert_number(cfg["aggregation"][key], f"aggregation.{key}", minimum=0, maximum=1)

    backfill_keys = {
        "batch_size",
        "page_size",
        "inter_batch_delay_seconds",
        "write_attempts",
        "backup_dir",
        "log_file",
        "audit_file",
    }
    _assert_required_keys(cfg["backfill"], backfill_keys, "backfill")
    _assert_no_unknown_keys(cfg["backfill"], backfill_keys, "backfill", allow_unknown)
    for key in ("batch_size", "page_size", "write_attempts"):
        value = cfg["backfill"][key]
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigError(f"backfill.{key} must be a positive integer")
    _assert_number(cfg["backfill"]["inter_batch_delay_seconds"], "backfill.inter_batch_delay_seconds", minimum=0)

    return cfg


def validate_locations_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    top_keys = {"facilities", "supply_base_keywords"}
    _assert_required_keys(cfg, top_keys, "locations config")
    _assert_no_unknown_keys(cfg, top_keys, "locations config", allow_unknown)

    facilities = cfg["facilities"]
    if not isinstance(facilities, list) or not facilities:
        raise ConfigError("locations.facilities must be a non-empty list")

    names: list[str] = []
    for idx, facility in enumerate(facilities):
        _assert_required_keys(facility, {"name"}, f"facilities[{idx}]")
        _assert_no_unknown_keys(facility, {"name", "aliases", "codes"}, f"facilities[{idx}]", allow_unknown)
        names.append(facility["name"])

    dupes = {name for name in names if names.count(name) > 1}
    if dupes:
        raise ConfigError(f"Duplicate facilities: {', '.join(sorted(dupes))}")

    if not isinstance(cfg["supply_base_keywords"], list):
        raise ConfigError("locations.supply_base_keywords must be a list")

    return cfg
