from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, Optional

from rich.console import Console
from rich.table import Table

from gitfeed import __version__
from gitfeed.config.settings import Settings, build_settings
from gitfeed.events.models import events_to_jsonable
from gitfeed.events.store import EventStore
from gitfeed.observability.event_log import read_diagnostics, tail_lines
from gitfeed.observability.feed_view import build_view, describe_result, run_feed_watch


def _add_runtime_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--repo", default=None, help="owner/name of the repository to follow")
    parser.add_argument("--api-base", default=None)
    parser.add_argument("--cache-dir", default=None)
    parser.add_argument("--cache-file", default=None)
    parser.add_argument("--retention", type=int, default=None)
    parser.add_argument("--timeout", type=float, default=None)
    parser.add_argument(
        "--persist-always",
        action="store_true",
        default=None,
        help="write the cache after every merge, not only when it overflows",
    )


def _settings_from_args(args: argparse.Namespace) -> Settings:
    return build_settings(
        repo=getattr(args, "repo", None),
        api_base=getattr(args, "api_base", None),
        cache_dir=getattr(args, "cache_dir", None),
        cache_file=getattr(args, "cache_file", None),
        retention=getattr(args, "retention", None),
        timeout=getattr(args, "timeout", None),
        persist_always=getattr(args, "persist_always", None),
    )


def _open_store(settings: Settings) -> EventStore:
    store = EventStore.from_settings(settings)
    store.load()
    return store


def handle_show(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    store = _open_store(settings)
    events = store.snapshot()
    if bool(args.json):
        print(json.dumps(events_to_jsonable(events), ensure_ascii=False, indent=2))
        return 0
    Console().print(build_view(events, repo=settings.repo, limit=max(0, int(args.limit))))
    return 0


def handle_refresh(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    store = _open_store(settings)
    result = store.fetch_and_merge(settings.feed_url)
    events = store.snapshot()
    if bool(args.json):
        payload: Dict[str, Any] = {
            "outcome": result.outcome,
            "status": result.status,
            "fetched": result.fetched,
            "total": result.total,
            "persisted": result.persisted,
            "events": events_to_jsonable(events),
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0
    Console().print(
        build_view(
            events,
            repo=settings.repo,
            status=describe_result(result),
            limit=max(0, int(args.limit)),
        )
    )
    return 0


def handle_watch(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    store = _open_store(settings)
    try:
        run_feed_watch(
            store,
            url=settings.feed_url,
            repo=settings.repo,
            interval=max(1.0, float(args.interval)),
            limit=max(0, int(args.limit)),
        )
    except KeyboardInterrupt:
        return 0
    return 0


def handle_path(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    table = Table(title="gitfeed paths")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("repo", settings.repo)
    table.add_row("feed_url", settings.feed_url)
    table.add_row("cache_file", str(settings.cache_path))
    table.add_row("events_file", str(settings.events_log_path))
    table.add_row("env_file", str(settings.env_path))
    table.add_row("retention", str(settings.retention))
    table.add_row("persist_always", str(settings.persist_always))
    Console().print(table)
    return 0


def handle_logs(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    limit = max(1, int(args.lines))
    if bool(args.json):
        records = read_diagnostics(settings.events_log_path, limit=limit, event=args.event)
        print(json.dumps(records, ensure_ascii=False, indent=2))
        return 0
    lines = tail_lines(settings.events_log_path, limit=limit)
    if not lines:
        print("No logs found")
        return 0
    for line in lines:
        print(line)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="cached GitHub repository activity feed",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    show_parser = sub.add_parser("show", help="print cached events")
    _add_runtime_options(show_parser)
    show_parser.add_argument("--limit", type=int, default=0)
    show_parser.add_argument("--json", action="store_true")
    show_parser.set_defaults(handler=handle_show)

    refresh_parser = sub.add_parser(
        "refresh",
        help="fetch the feed once and merge it into the cache",
        formatter_class=argparse.RawTextHelpFormatter,
        epilog=(
            "Examples:\n"
            "  gitfeed refresh --repo ReactiveX/RxSwift\n"
            "  gitfeed refresh --repo psf/requests --json\n"
        ),
    )
    _add_runtime_options(refresh_parser)
    refresh_parser.add_argument("--limit", type=int, default=0)
    refresh_parser.add_argument("--json", action="store_true")
    refresh_parser.set_defaults(handler=handle_refresh)

    watch_parser = sub.add_parser("watch", help="live view, refreshing on an interval")
    _add_runtime_options(watch_parser)
    watch_parser.add_argument("--interval", type=float, default=60.0)
    watch_parser.add_argument("--limit", type=int, default=20)
    watch_parser.set_defaults(handler=handle_watch)

    path_parser = sub.add_parser("path", help="show resolved cache and feed locations")
    _add_runtime_options(path_parser)
    path_parser.set_defaults(handler=handle_path)

    logs_parser = sub.add_parser("logs", help="tail diagnostics")
    _add_runtime_options(logs_parser)
    logs_parser.add_argument("--lines", type=int, default=120)
    logs_parser.add_argument("--json", action="store_true", help="parsed records instead of raw lines")
    logs_parser.add_argument("--event", default=None, help="only records with this event name (with --json)")
    logs_parser.set_defaults(handler=handle_logs)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2
    try:
        return int(handler(args))
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2
