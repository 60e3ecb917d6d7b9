"""Registry configuration and its JSON loading."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
import json
from pathlib import Path
from typing import Any

from .schema import FallbackPolicy, SchemaError, _enum, _expect_dict


@dataclass(frozen=True, slots=True)
class RegistryConfig:
    debug_mode: bool = False
    max_actions_per_evaluation: int = 10
    default_fallback: FallbackPolicy = FallbackPolicy.SKIP
    max_evaluation_ms: float = 5000.0
    # Advisory only; not enforced in-process.
    max_memory_mb: float = 100.0
    batch_deadline_seconds: float | None = None
    max_workers: int | None = None
    cache_ttl_seconds: float = 60.0

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str = "config") -> "RegistryConfig":
        data = _expect_dict(data, path)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise SchemaError(f"{path}.{unknown[0]}: unknown setting")
        return cls().with_changes(path=path, **data)

    def with_changes(self, path: str = "config", **changes: Any) -> "RegistryConfig":
        """Return a copy with ``changes`` applied after type checking."""
        parsed: dict[str, Any] = {}
        for key, value in changes.items():
            where = f"{path}.{key}"
            match key:
                case "debug_mode":
                    if not isinstance(value, bool):
                        raise SchemaError(f"{where}: expected boolean")
                    parsed[key] = value
                case "max_actions_per_evaluation":
                    parsed[key] = _positive_int(value, where)
                case "max_workers":
                    parsed[key] = None if value is None else _positive_int(value, where)
                case "default_fallback":
                    parsed[key] = _enum(FallbackPolicy, value, where)
                case "max_evaluation_ms" | "max_memory_mb" | "cache_ttl_seconds":
                    parsed[key] = _positive_number(value, where)
                case "batch_deadline_seconds":
                    parsed[key] = None if value is None else _positive_number(value, where)
                case _:
                    raise SchemaError(f"{where}: unknown setting")
        return replace(self, **parsed)


def _positive_int(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise SchemaError(f"{path}: expected integer")
    if value < 1:
        raise SchemaError(f"{path}: must be >= 1")
    return value


def _positive_number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SchemaError(f"{path}: expected number")
    if value <= 0:
        raise SchemaError(f"{path}: must be > 0")
    return float(value)


def load_config(path: str | Path) -> RegistryConfig:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise SchemaError("config: root must be a JSON object")
    return RegistryConfig.from_dict(raw)
