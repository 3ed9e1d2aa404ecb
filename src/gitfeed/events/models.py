from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlsplit


class DecodeError(ValueError):
    """Raised when a payload is not a JSON array of event objects."""


def _require_text(field_name: str, value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty string, got {value!r}")


def _require_url(field_name: str, value: Any) -> None:
    _require_text(field_name, value)
    parsed = urlsplit(value.strip())
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"{field_name} must be an absolute http(s) url, got {value!r}")


@dataclass(frozen=True)
class Actor:
    name: str
    avatar: str

    def __post_init__(self) -> None:
        _require_text("actor name", self.name)
        _require_url("actor avatar", self.avatar)


@dataclass(frozen=True)
class Repo:
    name: str

    def __post_init__(self) -> None:
        _require_text("repo name", self.name)


@dataclass(frozen=True)
class Event:
    actor: Actor
    repo: Repo
    action: str

    def __post_init__(self) -> None:
        _require_text("action", self.action)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.action,
            "repo": {"name": self.repo.name},
            "actor": {
                "display_login": self.actor.name,
                "avatar_url": self.actor.avatar,
            },
        }

    @property
    def summary(self) -> str:
        return f"{self.repo.name}, {action_label(self.action)}"


def _text_or_none(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def event_from_dict(raw: Any) -> Optional[Event]:
    """Build an Event from one feed record, or None if the record is unusable."""
    if not isinstance(raw, dict):
        return None
    repo = raw.get("repo")
    actor = raw.get("actor")
    if not isinstance(repo, dict) or not isinstance(actor, dict):
        return None
    actor_name = _text_or_none(actor.get("display_login")) or actor.get("login")
    try:
        return Event(
            actor=Actor(name=actor_name, avatar=actor.get("avatar_url")),
            repo=Repo(name=repo.get("name")),
            action=raw.get("type"),
        )
    except ValueError:
        return None


def decode_events(data: bytes | str) -> List[Event]:
    """Decode a JSON array of events.

    Records that do not look like events are dropped; only a payload that is
    not JSON or not an array raises :class:`DecodeError`.
    """
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"payload is not utf-8: {exc}") from exc
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"invalid json: {exc.msg}") from exc
    except RecursionError as exc:
        raise DecodeError("json nested too deeply") from exc
    if not isinstance(parsed, list):
        raise DecodeError(f"expected a json array, got {type(parsed).__name__}")
    events: List[Event] = []
    for item in parsed:
        event = event_from_dict(item)
        if event is not None:
            events.append(event)
    return events


def encode_events(events: Iterable[Event]) -> bytes:
    payload = [event.to_dict() for event in events]
    return json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")


def action_label(action: str) -> str:
    return action.replace("Event", "").lower()


def events_to_jsonable(events: Sequence[Event]) -> List[Dict[str, Any]]:
    return [event.to_dict() for event in events]
