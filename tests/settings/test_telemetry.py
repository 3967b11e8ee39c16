from __future__ import annotations

import pytest
from jsonschema import ValidationError

from idlesync.settings import RuntimeSettings
from idlesync.utils.telemetry import (
    TelemetryWriteWarning,
    clear,
    iter_events,
    record_structured_event,
    record_sync_event,
    summarize,
    tail,
    telemetry_path,
)


def test_sync_events_carry_player_and_round_fields(runtime_settings: RuntimeSettings) -> None:
    record_sync_event(runtime_settings, "sync.started", "p1", component="engine", correlation_id="abc", trigger="manual")
    record_sync_event(
        runtime_settings,
        "sync.failed",
        "p1",
        component="engine",
        level="error",
        status="failure",
        correlation_id="abc",
        duration_ms=12.5,
        error="timeout",
    )

    started, failed = list(iter_events(runtime_settings))
    assert started["playerId"] == "p1"
    assert started["payload"] == {"trigger": "manual"}
    assert failed["correlationId"] == started["correlationId"] == "abc"
    assert (failed["level"], failed["status"], failed["durationMs"]) == ("error", "failure", 12.5)
    assert failed["payload"]["error"] == "timeout"


def test_tail_and_summary_split_by_player(runtime_settings: RuntimeSettings) -> None:
    record_sync_event(runtime_settings, "sync.started", "p1", component="engine")
    record_sync_event(runtime_settings, "sync.failed", "p1", component="engine", level="error", status="failure")
    record_sync_event(runtime_settings, "sync.started", "p2", component="engine")
    record_sync_event(runtime_settings, "sync.completed", "p2", component="engine", status="success")
    record_sync_event(runtime_settings, "store.load_failed", None, component="service", level="warn")

    assert [event["event"] for event in tail(runtime_settings, 1, player_id="p1")] == ["sync.failed"]
    assert [event["event"] for event in iter_events(runtime_settings, player_id="p2")] == [
        "sync.started",
        "sync.completed",
    ]

    summary = summarize(iter_events(runtime_settings))
    assert summary["total"] == 5
    assert summary["by_player"] == {"p1": 2, "p2": 2}
    assert summary["failed_rounds"] == {"p1": 1}
    assert summary["by_level"] == {"info": 3, "error": 1, "warn": 1}
    assert summary["by_status"] == {"unknown": 3, "failure": 1, "success": 1}


def test_disabled_telemetry_writes_nothing(runtime_settings: RuntimeSettings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IDLESYNC_TELEMETRY", "off")
    record_sync_event(runtime_settings, "sync.started", "p1", component="engine")
    assert not telemetry_path(runtime_settings).exists()


def test_invalid_records_are_rejected(runtime_settings: RuntimeSettings) -> None:
    with pytest.raises(ValueError):
        record_structured_event(runtime_settings, "sync.started", level="debug")
    with pytest.raises(ValueError):
        record_structured_event(runtime_settings, " ")
    with pytest.raises(ValueError):
        record_structured_event(runtime_settings, "sync.completed", duration_ms=-1)


def test_schema_guards_optional_fields(runtime_settings: RuntimeSettings) -> None:
    with pytest.raises(ValidationError):
        record_structured_event(runtime_settings, "sync.started", status=7)  # type: ignore[arg-type]
    with pytest.raises(ValidationError):
        record_structured_event(runtime_settings, "sync.started", player_id="")


def test_unwritable_log_only_warns(tmp_path) -> None:
    blocked = tmp_path / "logs"
    blocked.write_text("", encoding="utf-8")
    settings = RuntimeSettings(home_dir=tmp_path, state_dir=tmp_path / "state", log_dir=blocked)

    with pytest.warns(TelemetryWriteWarning, match="store.save_failed"):
        record_sync_event(settings, "store.save_failed", "p1", component="service", level="warn")


def test_clear_and_skip_garbage_lines(runtime_settings: RuntimeSettings) -> None:
    record_sync_event(runtime_settings, "store.save_failed", "p1", component="service", level="warn")
    with telemetry_path(runtime_settings).open("a", encoding="utf-8") as fh:
        fh.write("not json\n\n[1, 2]\n")
    assert len(list(iter_events(runtime_settings))) == 1
    clear(runtime_settings)
    assert list(iter_events(runtime_settings)) == []
    clear(runtime_settings)
