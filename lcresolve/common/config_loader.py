"""Configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from lcresolve.common.errors import ConfigError
from lcresolve.common.fs import read_yaml
from lcresolve.common.schema import validate_engine_config, validate_locations_config


@dataclass(frozen=True)
class ConfigBundle:
    engine: dict
    locations: dict

    @property
    def matching(self) -> dict:
        return self.engine["matching"]

    @property
    def aggregation(self) -> dict:
        return self.engine["aggregation"]

    @property
    def backfill(self) -> dict:
        return self.engine["backfill"]


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    base = read_yaml(path) or {}
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path) or {}
    return _deep_merge(base, overlay)


def load_all_configs(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
) -> ConfigBundle:
    def overlay_for(name: str) -> Path | None:
        return (overlay_config_dir / name) if overlay_config_dir is not None else None

    engine = validate_engine_config(
        _load_yaml_with_overlay(config_dir / "engine.yml", overlay_for("engine.yml")),
        allow_unknown=allow_unknown,
    )
    locations = validate_locations_config(
        _load_yaml_with_overlay(config_dir / "locations.yml", overlay_for("locations.yml")),
        allow_unknown=allow_unknown,
    )
    return ConfigBundle(engine=engine, locations=locations)
