"""Sync telemetry: one JSON line per event, tagged with the player it concerns.

Records are appended to ``<log_dir>/telemetry.jsonl``. Every record carries
``ts``, ``event``, ``level`` and ``payload``; events about a single player also
carry a top-level ``playerId`` so that ``idlesync telemetry tail --player`` and
the per-player summary do not have to dig into payloads. A round of the sync
engine shares one ``correlationId`` across its ``sync.*`` records.

Writing is best-effort: an unwritable log directory produces a
:class:`TelemetryWriteWarning` and never interrupts a mutation or a sync round.
Malformed records are a programming error and still raise.
"""

from __future__ import annotations

import json
import os
import time
import warnings
from collections import Counter, deque
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List

import jsonschema

from idlesync.settings import RuntimeSettings

LEVELS = ("info", "warn", "error")
TELEMETRY_FILE = "telemetry.jsonl"
ENV_TOGGLE = "IDLESYNC_TELEMETRY"

_OFF = frozenset({"0", "false", "no", "off"})


class TelemetryWriteWarning(RuntimeWarning):
    """The telemetry log could not be appended to."""


def telemetry_enabled() -> bool:
    return os.getenv(ENV_TOGGLE, "1").strip().lower() not in _OFF


def telemetry_path(settings: RuntimeSettings) -> Path:
    return settings.log_dir / TELEMETRY_FILE


def record_sync_event(
    settings: RuntimeSettings,
    event: str,
    player_id: str | None,
    *,
    component: str,
    level: str = "info",
    status: str | None = None,
    correlation_id: str | None = None,
    duration_ms: float | None = None,
    **fields: Any,
) -> None:
    """Record ``event`` for ``player_id``; extra keyword fields form the payload."""

    record_structured_event(
        settings,
        event,
        payload=fields,
        player_id=player_id,
        level=level,
        status=status,
        component=component,
        correlation_id=correlation_id,
        duration_ms=duration_ms,
    )


def record_structured_event(
    settings: RuntimeSettings,
    event: str,
    *,
    payload: Dict[str, Any] | None = None,
    player_id: str | None = None,
    level: str = "info",
    status: str | None = None,
    component: str | None = None,
    correlation_id: str | None = None,
    duration_ms: float | None = None,
) -> None:
    if not telemetry_enabled():
        return
    optional = {
        "playerId": player_id,
        "status": status,
        "component": component,
        "correlationId": correlation_id,
        "durationMs": duration_ms,
    }
    record: Dict[str, Any] = {"ts": time.time(), "event": event, "level": level, "payload": dict(payload or {})}
    record.update({key: value for key, value in optional.items() if value is not None})
    _check_record(record)
    _append(telemetry_path(settings), record)


def iter_events(settings: RuntimeSettings, *, player_id: str | None = None) -> Iterator[Dict[str, Any]]:
    """Yield stored records oldest first, skipping lines that are not JSON objects."""

    log_path = telemetry_path(settings)
    if not log_path.exists():
        return
    with log_path.open("r", encoding="utf-8") as fh:
        for raw in fh:
            raw = raw.strip()
            if not raw:
                continue
            try:
                record = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if not isinstance(record, dict):
                continue
            if player_id is not None and record.get("playerId") != player_id:
                continue
            yield record


def tail(settings: RuntimeSettings, limit: int = 20, *, player_id: str | None = None) -> List[Dict[str, Any]]:
    return list(deque(iter_events(settings, player_id=player_id), maxlen=max(limit, 0)))


def summarize(events: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Counts per event, level, status and player, plus the failed rounds per player."""

    by_event: Counter[str] = Counter()
    by_level: Counter[str] = Counter()
    by_status: Counter[str] = Counter()
    by_player: Counter[str] = Counter()
    failed_rounds: Counter[str] = Counter()
    for record in events:
        by_event[record.get("event", "unknown")] += 1
        by_level[record.get("level", "info")] += 1
        by_status[record.get("status", "unknown")] += 1
        player = record.get("playerId")
        if player is None:
            continue
        by_player[player] += 1
        if record.get("event") == "sync.failed":
            failed_rounds[player] += 1
    return {
        "total": sum(by_event.values()),
        "by_event": dict(by_event),
        "by_level": dict(by_level),
        "by_status": dict(by_status),
        "by_player": dict(by_player),
        "failed_rounds": dict(failed_rounds),
    }


def clear(settings: RuntimeSettings) -> None:
    telemetry_path(settings).unlink(missing_ok=True)


def _append(log_path: Path, record: Dict[str, Any]) -> None:
    line = json.dumps(record, ensure_ascii=False) + "\n"
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as fh:
            fh.write(line)
    except OSError as exc:
        warnings.warn(
            f"telemetry event {record['event']} not written to {log_path}: {exc}",
            TelemetryWriteWarning,
            stacklevel=3,
        )


def _check_record(record: Dict[str, Any]) -> None:
    if not isinstance(record["event"], str) or not record["event"].strip():
        raise ValueError("telemetry event name must be a non-empty string")
    if record["level"] not in LEVELS:
        raise ValueError(f"telemetry level {record['level']!r} is not one of {', '.join(LEVELS)}")
    duration = record.get("durationMs")
    if duration is not None and (isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration < 0):
        raise ValueError("telemetry durationMs must be a non-negative number")
    _record_validator().validate(record)


@lru_cache(maxsize=1)
def _record_validator() -> jsonschema.Draft202012Validator:
    schema_text = (resources.files("idlesync.resources") / "telemetry.schema.json").read_text(encoding="utf-8")
    return jsonschema.Draft202012Validator(json.loads(schema_text))
