"""Tunables for the offline queue and its sync loop."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from idlesync.domain.sync import ResolutionStrategy


class SyncConfigError(ValueError):
    """Raised when a sync configuration document is invalid."""


@dataclass(frozen=True)
class SyncConfiguration:
    sync_interval_seconds: float = 30.0
    sync_timeout_seconds: float = 30.0
    max_pending_operations: int = 1000
    max_sync_errors: int = 10
    max_resolution_log: int = 100
    sync_batch_size: int = 50
    retry_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 300.0
    conflict_strategy: ResolutionStrategy = ResolutionStrategy.MERGE

    def __post_init__(self) -> None:
        for name in ("sync_interval_seconds", "sync_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise SyncConfigError(f"{name} must be positive")
        for name in ("max_pending_operations", "max_sync_errors", "max_resolution_log", "sync_batch_size"):
            if getattr(self, name) < 1:
                raise SyncConfigError(f"{name} must be at least 1")
        if self.retry_backoff_seconds < 0 or self.max_backoff_seconds < 0:
            raise SyncConfigError("backoff values must be non-negative")
        if not isinstance(self.conflict_strategy, ResolutionStrategy):
            try:
                object.__setattr__(self, "conflict_strategy", ResolutionStrategy(self.conflict_strategy))
            except ValueError as exc:
                raise SyncConfigError(f"unknown conflict strategy: {self.conflict_strategy}") from exc

    def backoff_seconds(self, failures: int) -> float:
        """Delay before the next automatic attempt after ``failures`` consecutive failures."""
        if failures <= 0:
            return 0.0
        delay = self.retry_backoff_seconds * (2 ** (failures - 1))
        return min(delay, self.max_backoff_seconds)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["conflict_strategy"] = self.conflict_strategy.value
        return payload


_FIELD_TYPES: Dict[str, tuple] = {
    "sync_interval_seconds": (int, float),
    "sync_timeout_seconds": (int, float),
    "max_pending_operations": (int,),
    "max_sync_errors": (int,),
    "max_resolution_log": (int,),
    "sync_batch_size": (int,),
    "retry_backoff_seconds": (int, float),
    "max_backoff_seconds": (int, float),
    "conflict_strategy": (str,),
}


def config_from_mapping(data: Mapping[str, Any]) -> SyncConfiguration:
    known = {item.name for item in fields(SyncConfiguration)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise SyncConfigError(f"unknown sync settings: {', '.join(unknown)}")
    values: Dict[str, Any] = {}
    for key, value in data.items():
        expected = _FIELD_TYPES[key]
        if isinstance(value, bool) or not isinstance(value, expected):
            raise SyncConfigError(f"sync setting '{key}' has invalid type {type(value).__name__}")
        values[key] = value
    return SyncConfiguration(**values)


def load_sync_config(config_path: Path) -> SyncConfiguration:
    if not config_path.exists():
        return SyncConfiguration()
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise SyncConfigError(f"sync config is not valid YAML: {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise SyncConfigError(f"sync config root must be a mapping: {config_path}")
    section = data.get("sync") or {}
    if not isinstance(section, dict):
        raise SyncConfigError("sync config 'sync' section must be a mapping")
    return config_from_mapping(section)


__all__ = ["SyncConfigError", "SyncConfiguration", "config_from_mapping", "load_sync_config"]
