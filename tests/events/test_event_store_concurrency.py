from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import List

from gitfeed.events.models import Actor, Event, Repo, encode_events
from gitfeed.events.store import OUTCOME_COALESCED, OUTCOME_MERGED, EventStore, RefreshResult
from gitfeed.feed.http_client import FeedResponse

FEED_URL = "https://api.github.com/repos/ReactiveX/RxSwift/events"


def _event(index: int) -> Event:
    return Event(
        actor=Actor(name=f"user{index}", avatar=f"https://avatars.example.com/u/{index}"),
        repo=Repo(name="ReactiveX/RxSwift"),
        action="WatchEvent",
    )


class _CountingEvent(threading.Event):
    def __init__(self) -> None:
        super().__init__()
        self.waiters = 0
        self._count_lock = threading.Lock()

    def wait(self, timeout=None) -> bool:
        with self._count_lock:
            self.waiters += 1
        return super().wait(timeout)


class _GatedFetcher:
    """Blocks every call until released and records each requested url."""

    def __init__(self, events: List[Event]) -> None:
        self.body = encode_events(events)
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def __call__(self, url: str) -> FeedResponse:
        with self._lock:
            self.calls.append(url)
        self.started.set()
        assert self.release.wait(timeout=5.0)
        return FeedResponse(status=200, body=self.body)


def test_overlapping_refreshes_for_same_url_issue_one_request(tmp_path: Path) -> None:
    fetcher = _GatedFetcher([_event(1), _event(2)])
    store = EventStore(tmp_path / "events.json", fetcher=fetcher)
    results: List[RefreshResult] = []
    results_lock = threading.Lock()

    def worker() -> None:
        result = store.fetch_and_merge(FEED_URL)
        with results_lock:
            results.append(result)

    first = threading.Thread(target=worker)
    first.start()
    assert fetcher.started.wait(timeout=5.0)
    gate = _CountingEvent()
    store._flights[FEED_URL].done = gate
    followers = [threading.Thread(target=worker) for _ in range(3)]
    for thread in followers:
        thread.start()
    deadline = time.time() + 5.0
    while gate.waiters < 3 and time.time() < deadline:
        time.sleep(0.01)
    assert gate.waiters == 3
    fetcher.release.set()
    for thread in [first, *followers]:
        thread.join(timeout=5.0)

    assert fetcher.calls == [FEED_URL]
    assert len(store) == 2
    outcomes = sorted(result.outcome for result in results)
    assert outcomes == [OUTCOME_COALESCED] * 3 + [OUTCOME_MERGED]
    assert all(result.fetched == 2 for result in results)


def test_sequential_refreshes_each_fetch(tmp_path: Path) -> None:
    fetcher = _GatedFetcher([_event(1)])
    fetcher.release.set()
    store = EventStore(tmp_path / "events.json", fetcher=fetcher)

    store.fetch_and_merge(FEED_URL)
    store.fetch_and_merge(FEED_URL)

    assert fetcher.calls == [FEED_URL, FEED_URL]
    assert list(store.snapshot()) == [_event(1), _event(1)]


def test_concurrent_merges_never_lose_updates(tmp_path: Path) -> None:
    store = EventStore(tmp_path / "events.json", retention=1000)
    barrier = threading.Barrier(8)

    def worker(offset: int) -> None:
        barrier.wait()
        for index in range(25):
            store.merge([_event(offset * 100 + index)])

    threads = [threading.Thread(target=worker, args=(offset,)) for offset in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10.0)

    assert len(store) == 200
    assert len(set(store.snapshot())) == 200
