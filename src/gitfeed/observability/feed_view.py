from __future__ import annotations

import threading
import time
from typing import ClassVar, Dict, List, Optional, Sequence, Set, Tuple

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from gitfeed.events.models import Event
from gitfeed.events.store import (
    OUTCOME_COALESCED,
    OUTCOME_DECODE_ERROR,
    OUTCOME_HTTP_ERROR,
    OUTCOME_MERGED,
    EventStore,
    RefreshResult,
)


def _shorten(value: str, max_len: int = 24) -> str:
    if not value:
        return "-"
    if len(value) <= max_len:
        return value
    return f"{value[: max_len - 1]}…"


def event_row(event: Event) -> Tuple[str, str, str]:
    return event.actor.name, event.summary, event.actor.avatar


def count_prepended(previous: Sequence[Event], current: Sequence[Event]) -> int:
    """How many rows at the top of ``current`` were not in ``previous``."""
    for offset in range(len(current) + 1):
        overlap = tuple(current[offset:])
        if tuple(previous[: len(overlap)]) == overlap:
            return offset
    return len(current)


def describe_result(result: RefreshResult) -> str:
    if result.outcome == OUTCOME_MERGED:
        saved = "saved" if result.persisted else "not saved"
        return f"fetched {result.fetched}, holding {result.total} ({saved})"
    if result.outcome == OUTCOME_HTTP_ERROR:
        return f"feed answered HTTP {result.status}; kept {result.total} cached"
    if result.outcome == OUTCOME_DECODE_ERROR:
        return f"feed body was not an event list; kept {result.total} cached"
    if result.outcome == OUTCOME_COALESCED:
        return f"joined a refresh already in flight; holding {result.total}"
    return f"feed unreachable; kept {result.total} cached"


class NewEventTracker:
    """Highlights rows that were prepended since the previous snapshot."""

    HIGHLIGHT_SECONDS: ClassVar[float] = 5.0

    def __init__(self) -> None:
        self._previous: Optional[Tuple[Event, ...]] = None
        self._highlight_until: List[float] = []

    def update(self, events: Sequence[Event]) -> Set[int]:
        current_time = time.time()
        current = tuple(events)

        if self._previous is None:
            self._previous = current
            self._highlight_until = [0.0] * len(current)
            return set()

        fresh = count_prepended(self._previous, current)
        deadlines = [current_time + self.HIGHLIGHT_SECONDS] * fresh + self._highlight_until
        deadlines = deadlines[: len(current)]
        deadlines.extend([0.0] * (len(current) - len(deadlines)))
        self._highlight_until = deadlines
        self._previous = current
        return {index for index, until in enumerate(deadlines) if until > current_time}


def build_table(
    events: Sequence[Event],
    *,
    highlight: Optional[Set[int]] = None,
    limit: int = 0,
) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", style="dim", no_wrap=True)
    table.add_column("ACTOR", style="cyan", no_wrap=True)
    table.add_column("ACTIVITY", style="white")
    table.add_column("AVATAR", style="dim", no_wrap=True)
    shown = list(events[:limit]) if limit > 0 else list(events)
    for index, event in enumerate(shown):
        name, summary, avatar = event_row(event)
        style = "bold" if highlight and index in highlight else None
        table.add_row(str(index + 1), _shorten(name), summary, avatar, style=style)
    return table


def build_view(
    events: Sequence[Event],
    *,
    repo: str,
    highlight: Optional[Set[int]] = None,
    status: Optional[str] = None,
    refreshing: bool = False,
    limit: int = 0,
) -> Panel:
    title = f"{repo} | latest-first | events={len(events)}"
    if refreshing:
        title = f"{title} | refreshing…"
    body: object = build_table(events, highlight=highlight, limit=limit) if events else Text("no events cached")
    subtitle = Text(status, style="dim") if status else None
    return Panel(body, title=title, subtitle=subtitle, expand=True)


def run_feed_watch(
    store: EventStore,
    *,
    url: str,
    repo: str,
    interval: float = 60.0,
    limit: int = 0,
    console: Optional[Console] = None,
) -> None:
    console = console or Console()
    tracker = NewEventTracker()
    lock = threading.Lock()
    state: Dict[str, object] = {"events": store.snapshot(), "status": None, "refreshing": False}
    changed = threading.Event()

    def on_snapshot(snapshot: Tuple[Event, ...]) -> None:
        with lock:
            state["events"] = snapshot
        changed.set()

    def on_complete(result: RefreshResult) -> None:
        with lock:
            state["status"] = describe_result(result)
            state["refreshing"] = False
        changed.set()

    unsubscribe = store.subscribe(on_snapshot)
    try:
        with Live(console=console, auto_refresh=False, screen=False) as live:
            next_refresh = 0.0
            while True:
                if time.time() >= next_refresh:
                    with lock:
                        state["refreshing"] = True
                    store.refresh_in_background(url, on_complete=on_complete)
                    next_refresh = time.time() + max(1.0, interval)
                with lock:
                    events: List[Event] = list(state["events"])  # type: ignore[call-overload]
                    status = state["status"]
                    refreshing = bool(state["refreshing"])
                panel = build_view(
                    events,
                    repo=repo,
                    highlight=tracker.update(events),
                    status=str(status) if status else None,
                    refreshing=refreshing,
                    limit=limit,
                )
                live.update(panel, refresh=True)
                changed.wait(timeout=1.0)
                changed.clear()
    finally:
        unsubscribe()
