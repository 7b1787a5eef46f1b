"""Filesystem helpers."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Iterable, Mapping


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def read_yaml(path: Path):
    import yaml

    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def write_json(path: Path, payload) -> None:
    ensure_dir(path.parent)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2, sort_keys=True, default=str)
        f.write("\n")


def write_json_atomic(path: Path, payload) -> None:
    tmp_path = path.with_name(f".{path.name}.tmp")
    write_json(tmp_path, payload)
    os.replace(tmp_path, path)


def read_json(path: Path):
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def append_jsonl(path: Path, rows: Iterable[Mapping[str, object]]) -> int:
    ensure_dir(path.parent)
    count = 0
    with path.open("a", encoding="utf-8") as f:
        for row in rows:
            f.write(json.dumps(row, ensure_ascii=False, sort_keys=True, default=str))
            f.write("\n")
            count += 1
    return count
