from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

LEVEL_INFO = "INFO"
LEVEL_WARNING = "WARNING"


def _field_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    if isinstance(value, (list, tuple)):
        return [_field_value(item) for item in value]
    return str(value)


@dataclass(frozen=True)
class Diagnostic:
    """One line of the store's diagnostics file."""

    event: str
    level: str = LEVEL_INFO
    message: str = ""
    fields: Dict[str, Any] = field(default_factory=dict)

    def to_record(self, when: datetime) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "ts": when.isoformat(),
            "level": self.level,
            "event": self.event,
            "message": self.message,
        }
        for key, value in self.fields.items():
            record[key] = _field_value(value)
        return record


def cache_loaded(path: Path, count: int) -> Diagnostic:
    return Diagnostic("store_loaded", fields={"path": path, "count": count})


def cache_missing(path: Path) -> Diagnostic:
    return Diagnostic("store_load_missing", fields={"path": path})


def cache_unreadable(path: Path, error: BaseException) -> Diagnostic:
    return Diagnostic(
        "store_load_failed",
        LEVEL_WARNING,
        "cache unreadable, starting empty",
        {"path": path, "error": error},
    )


def cache_write_failed(path: Path, error: BaseException) -> Diagnostic:
    return Diagnostic("persist_failed", LEVEL_WARNING, "kept previous cache file", {"path": path, "error": error})


def feed_unreachable(url: str, error: BaseException) -> Diagnostic:
    return Diagnostic("fetch_network_error", LEVEL_WARNING, fields={"url": url, "error": error})


def feed_rejected(url: str, status: int) -> Diagnostic:
    return Diagnostic("fetch_http_error", LEVEL_WARNING, fields={"url": url, "status": status})


def feed_undecodable(url: str, status: int, error: BaseException) -> Diagnostic:
    return Diagnostic("fetch_decode_failed", LEVEL_WARNING, fields={"url": url, "status": status, "error": error})


def feed_merged(url: str, *, status: int, fetched: int, total: int, persisted: bool) -> Diagnostic:
    return Diagnostic(
        "fetch_merged",
        fields={"url": url, "status": status, "fetched": fetched, "total": total, "persisted": persisted},
    )


def callback_failed(kind: str, error: BaseException) -> Diagnostic:
    return Diagnostic(f"{kind}_failed", LEVEL_WARNING, fields={"error": error})


class EventLogger:
    """Appends diagnostics as JSON lines next to the events cache."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def emit(self, diagnostic: Diagnostic) -> None:
        raw = json.dumps(diagnostic.to_record(datetime.now(timezone.utc)), ensure_ascii=False)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(raw + "\n")


def tail_lines(path: Path, limit: int = 120) -> list[str]:
    if limit <= 0:
        limit = 120
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except (FileNotFoundError, OSError):
        return []
    return lines[-limit:]


def read_diagnostics(path: Path, limit: int = 120, *, event: Optional[str] = None) -> List[Dict[str, Any]]:
    """Parsed tail of the diagnostics file, oldest first; broken lines are skipped."""
    records: List[Dict[str, Any]] = []
    for line in tail_lines(path, limit=limit):
        try:
            record = json.loads(line)
        except (ValueError, RecursionError):
            continue
        if not isinstance(record, dict):
            continue
        if event is not None and record.get("event") != event:
            continue
        records.append(record)
    return records
