from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True)
class Settings:
    key_column: str = "species"
    tree_format: str = "newick"
    delimiter: str = ","
    na_values: tuple[str, ...] = ("NA", "")
    ultrametric_rtol: float = 1e-8
    ultrametric_atol: float = 0.0
    required_columns: tuple[str, ...] = ()
    timeout_sec: int = 3600

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["na_values"] = list(self.na_values)
        payload["required_columns"] = list(self.required_columns)
        return payload

    def updated(self, **overrides: Any) -> Settings:
        """Return a copy with the non-None overrides applied."""
        return _coerce(self, {k: v for k, v in overrides.items() if v is not None})


_TUPLE_FIELDS = {"na_values", "required_columns"}


def _coerce(base: Settings, payload: dict[str, Any]) -> Settings:
    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")
    values: dict[str, Any] = {}
    for key, value in payload.items():
        if key == "required_columns" and isinstance(value, str):
            values[key] = tuple(v.strip() for v in value.split(",") if v.strip())
        elif key in _TUPLE_FIELDS:
            if isinstance(value, str):
                value = [value]
            values[key] = tuple(str(v) for v in value)
        elif key in {"ultrametric_rtol", "ultrametric_atol"}:
            values[key] = float(value)
        elif key == "timeout_sec":
            values[key] = int(value)
            if values[key] <= 0:
                raise ValueError("timeout_sec must be > 0.")
        else:
            values[key] = str(value)
    return replace(base, **values)


def _load_yaml_or_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        payload = json.loads(text)
    else:
        try:
            payload = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ValueError(f"Could not parse config file: {path}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError(f"Config must be a mapping object: {path}")
    return payload


def load_settings(path: str | Path | None = None) -> Settings:
    if path is None:
        return Settings()
    return _coerce(Settings(), _load_yaml_or_json(Path(path).expanduser().resolve()))
