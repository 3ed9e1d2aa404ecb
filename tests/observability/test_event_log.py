from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from gitfeed.observability import event_log
from gitfeed.observability.event_log import Diagnostic, EventLogger, read_diagnostics, tail_lines

FEED_URL = "https://api.github.com/repos/octo/hello/events"


def test_emit_appends_one_json_line_per_diagnostic(tmp_path: Path) -> None:
    logger = EventLogger(tmp_path / "nested" / "diag.jsonl")
    logger.emit(event_log.feed_rejected(FEED_URL, 404))
    logger.emit(event_log.feed_merged(FEED_URL, status=200, fetched=3, total=50, persisted=True))

    first, second = (json.loads(line) for line in tail_lines(logger.path))
    assert first["level"] == "WARNING"
    assert first["event"] == "fetch_http_error"
    assert first["url"] == FEED_URL
    assert first["status"] == 404
    assert first["ts"]
    assert second["level"] == "INFO"
    assert second["event"] == "fetch_merged"
    assert (second["fetched"], second["total"], second["persisted"]) == (3, 50, True)


def test_cache_diagnostics_render_paths_and_errors_as_text(tmp_path: Path) -> None:
    cache = tmp_path / "events.json"
    record = event_log.cache_unreadable(cache, PermissionError("denied")).to_record(
        datetime(2024, 1, 2, tzinfo=timezone.utc)
    )
    assert record["ts"] == "2024-01-02T00:00:00+00:00"
    assert record["event"] == "store_load_failed"
    assert record["message"] == "cache unreadable, starting empty"
    assert record["path"] == str(cache)
    assert record["error"] == "PermissionError: denied"


def test_callback_failure_names_the_callback_kind() -> None:
    diagnostic = event_log.callback_failed("listener", RuntimeError("boom"))
    assert diagnostic.event == "listener_failed"
    assert diagnostic.level == event_log.LEVEL_WARNING
    assert diagnostic.to_record(datetime.now(timezone.utc))["error"] == "RuntimeError: boom"


def test_read_diagnostics_skips_broken_lines_and_filters_by_event(tmp_path: Path) -> None:
    logger = EventLogger(tmp_path / "diag.jsonl")
    logger.emit(event_log.cache_missing(tmp_path / "events.json"))
    with logger.path.open("a", encoding="utf-8") as handle:
        handle.write("{half a line\n")
        handle.write("[" * 5000 + "\n")
        handle.write("[1, 2]\n")
    logger.emit(Diagnostic("fetch_network_error", event_log.LEVEL_WARNING, fields={"url": FEED_URL}))
    logger.emit(event_log.feed_rejected(FEED_URL, 500))

    records = read_diagnostics(logger.path)
    assert [record["event"] for record in records] == [
        "store_load_missing",
        "fetch_network_error",
        "fetch_http_error",
    ]
    only_http = read_diagnostics(logger.path, event="fetch_http_error")
    assert [record["status"] for record in only_http] == [500]
    assert read_diagnostics(tmp_path / "absent.jsonl") == []


def test_tail_lines_limits_and_tolerates_missing_file(tmp_path: Path) -> None:
    path = tmp_path / "diag.jsonl"
    assert tail_lines(path) == []
    path.write_text("\n".join(str(index) for index in range(10)), encoding="utf-8")
    assert tail_lines(path, limit=3) == ["7", "8", "9"]
