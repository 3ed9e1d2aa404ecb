from __future__ import annotations

import os
import tempfile
import threading
from dataclasses import dataclass, replace
from functools import partial
from http.client import HTTPException
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from gitfeed.config.settings import Settings
from gitfeed.events.models import DecodeError, Event, decode_events, encode_events
from gitfeed.feed.http_client import FeedResponse, fetch_feed
from gitfeed.observability import event_log
from gitfeed.observability.event_log import Diagnostic, EventLogger

RETENTION_LIMIT = 50

OUTCOME_MERGED = "merged"
OUTCOME_HTTP_ERROR = "http_error"
OUTCOME_DECODE_ERROR = "decode_error"
OUTCOME_NETWORK_ERROR = "network_error"
OUTCOME_COALESCED = "coalesced"

Snapshot = Tuple[Event, ...]
Listener = Callable[[Snapshot], None]
Fetcher = Callable[[str], FeedResponse]


@dataclass(frozen=True)
class RefreshResult:
    outcome: str
    status: Optional[int] = None
    fetched: int = 0
    total: int = 0
    persisted: bool = False

    @property
    def merged(self) -> bool:
        return self.outcome == OUTCOME_MERGED


class _Flight:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: Optional[RefreshResult] = None


def _remove_file(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError:
        return


class EventStore:
    """Most-recent-first activity events, bounded and mirrored to a JSON file.

    Every failure on the disk or network path is recorded through the
    diagnostics logger and otherwise ignored: the store keeps whatever state
    it had before the failing operation.
    """

    def __init__(
        self,
        cache_path: Path,
        *,
        retention: int = RETENTION_LIMIT,
        persist_always: bool = False,
        fetcher: Optional[Fetcher] = None,
        timeout: float = 10.0,
        logger: Optional[EventLogger] = None,
    ) -> None:
        self._cache_path = Path(cache_path)
        self._retention = max(1, int(retention))
        self._persist_always = bool(persist_always)
        self._fetcher: Fetcher = fetcher or partial(fetch_feed, timeout=timeout)
        self._logger = logger
        self._events: Snapshot = ()
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()
        self._flights: Dict[str, _Flight] = {}
        self._flights_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, *, fetcher: Optional[Fetcher] = None) -> "EventStore":
        return cls(
            settings.cache_path,
            retention=settings.retention,
            persist_always=settings.persist_always,
            fetcher=fetcher,
            timeout=settings.timeout,
            logger=EventLogger(settings.events_log_path),
        )

    @property
    def cache_path(self) -> Path:
        return self._cache_path

    @property
    def retention(self) -> int:
        return self._retention

    @property
    def events(self) -> Snapshot:
        return self.snapshot()

    def snapshot(self) -> Snapshot:
        with self._lock:
            return self._events

    def __len__(self) -> int:
        return len(self.snapshot())

    def load(self) -> Snapshot:
        """Replace the in-memory events with the cached file; empty on any failure."""
        with self._lock:
            events: List[Event] = []
            try:
                events = decode_events(self._cache_path.read_bytes())
            except FileNotFoundError:
                self._log(event_log.cache_missing(self._cache_path))
            except (OSError, DecodeError) as exc:
                self._log(event_log.cache_unreadable(self._cache_path, exc))
            else:
                self._log(event_log.cache_loaded(self._cache_path, len(events)))
            self._events = tuple(events[: self._retention])
            self._publish()
            return self._events

    def merge(self, new_events: Sequence[Event]) -> bool:
        """Put ``new_events`` in front, truncate, publish. Returns whether the file was written."""
        with self._lock:
            persisted, _total = self._merge_locked(new_events)
        return persisted

    def fetch_and_merge(self, url: str) -> RefreshResult:
        with self._flights_lock:
            flight = self._flights.get(url)
            leader = flight is None
            if flight is None:
                flight = _Flight()
                self._flights[url] = flight

        if not leader:
            flight.done.wait()
            assert flight.result is not None
            return replace(flight.result, outcome=OUTCOME_COALESCED)

        result = RefreshResult(outcome=OUTCOME_NETWORK_ERROR, total=len(self))
        try:
            result = self._fetch_once(url)
            return result
        finally:
            with self._flights_lock:
                self._flights.pop(url, None)
            flight.result = result
            flight.done.set()

    def refresh_in_background(
        self,
        url: str,
        on_complete: Optional[Callable[[RefreshResult], None]] = None,
    ) -> threading.Thread:
        def run() -> None:
            result = RefreshResult(outcome=OUTCOME_NETWORK_ERROR, total=len(self))
            try:
                result = self.fetch_and_merge(url)
            finally:
                if on_complete is not None:
                    try:
                        on_complete(result)
                    except Exception as exc:  # noqa: BLE001
                        self._log(event_log.callback_failed("refresh_callback", exc))

        thread = threading.Thread(target=run, name="gitfeed-refresh", daemon=True)
        thread.start()
        return thread

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; it receives the current snapshot right away."""
        with self._lock:
            self._listeners.append(listener)
            self._notify(listener, self._events)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners.remove(listener)
                except ValueError:
                    return

        return unsubscribe

    def _fetch_once(self, url: str) -> RefreshResult:
        try:
            response = self._fetcher(url)
        except (OSError, HTTPException, ValueError) as exc:
            self._log(event_log.feed_unreachable(url, exc))
            return RefreshResult(outcome=OUTCOME_NETWORK_ERROR, total=len(self))

        if not response.ok:
            self._log(event_log.feed_rejected(url, response.status))
            return RefreshResult(outcome=OUTCOME_HTTP_ERROR, status=response.status, total=len(self))

        try:
            new_events = decode_events(response.body)
        except DecodeError as exc:
            self._log(event_log.feed_undecodable(url, response.status, exc))
            return RefreshResult(outcome=OUTCOME_DECODE_ERROR, status=response.status, total=len(self))

        with self._lock:
            persisted, total = self._merge_locked(new_events)
        self._log(
            event_log.feed_merged(
                url,
                status=response.status,
                fetched=len(new_events),
                total=total,
                persisted=persisted,
            )
        )
        return RefreshResult(
            outcome=OUTCOME_MERGED,
            status=response.status,
            fetched=len(new_events),
            total=total,
            persisted=persisted,
        )

    def _merge_locked(self, new_events: Sequence[Event]) -> Tuple[bool, int]:
        merged = list(new_events) + list(self._events)
        persisted = False
        if len(merged) > self._retention:
            merged = merged[: self._retention]
            persisted = self._persist(merged)
        elif self._persist_always:
            persisted = self._persist(merged)
        self._events = tuple(merged)
        self._publish()
        return persisted, len(self._events)

    def _persist(self, events: Sequence[Event]) -> bool:
        path = self._cache_path
        tmp_path: Optional[Path] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
            tmp_path = Path(tmp_name)
            with open(tmp_fd, "wb") as handle:
                handle.write(encode_events(events))
                handle.flush()
                os.fsync(handle.fileno())
            tmp_path.replace(path)
            tmp_path = None
        except OSError as exc:
            self._log(event_log.cache_write_failed(path, exc))
            return False
        finally:
            if tmp_path is not None:
                _remove_file(tmp_path)
        return True

    def _publish(self) -> None:
        snapshot = self._events
        for listener in list(self._listeners):
            self._notify(listener, snapshot)

    def _notify(self, listener: Listener, snapshot: Snapshot) -> None:
        try:
            listener(snapshot)
        except Exception as exc:  # noqa: BLE001
            self._log(event_log.callback_failed("listener", exc))

    def _log(self, diagnostic: Diagnostic) -> None:
        if self._logger is None:
            return
        try:
            self._logger.emit(diagnostic)
        except OSError:
            return
