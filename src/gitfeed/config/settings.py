from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from platformdirs import user_cache_dir

from gitfeed.feed.http_client import feed_url, validate_repo

APP_NAME = "gitfeed"

DEFAULT_REPO = "ReactiveX/RxSwift"
DEFAULT_API_BASE = "https://api.github.com"
DEFAULT_CACHE_FILE = "events.json"
DEFAULT_ENV_FILE = ".env"
DEFAULT_EVENTS_LOG_FILE = "gitfeed.events.jsonl"
DEFAULT_RETENTION = 50
DEFAULT_TIMEOUT = 10.0

ENV_REPO = "GITFEED_REPO"
ENV_API_BASE = "GITFEED_API_BASE"
ENV_CACHE_DIR = "GITFEED_CACHE_DIR"
ENV_CACHE_FILE = "GITFEED_CACHE_FILE"
ENV_ENV_FILE = "GITFEED_ENV_FILE"
ENV_RETENTION = "GITFEED_RETENTION"
ENV_TIMEOUT = "GITFEED_TIMEOUT"
ENV_PERSIST_ALWAYS = "GITFEED_PERSIST_ALWAYS"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def resolve_path(path: str) -> Path:
    return Path(os.path.expanduser(path))


def default_cache_dir() -> str:
    return user_cache_dir(APP_NAME)


def env_file_path(cache_dir: str) -> Path:
    explicit = os.environ.get(ENV_ENV_FILE)
    if explicit:
        return resolve_path(explicit)
    return resolve_path(cache_dir) / DEFAULT_ENV_FILE


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in _TRUE_VALUES


def parse_positive_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    if parsed <= 0:
        return default
    return parsed


def parse_positive_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    if parsed <= 0:
        return default
    return parsed


def load_env_file(path: Path) -> Dict[str, str]:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except (FileNotFoundError, OSError):
        return {}
    data: Dict[str, str] = {}
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
            value = value[1:-1]
        if key:
            data[key] = value
    return data


@dataclass(frozen=True)
class Settings:
    repo: str
    api_base: str
    cache_dir: str
    cache_file: str
    retention: int
    timeout: float
    persist_always: bool

    @property
    def cache_path(self) -> Path:
        return resolve_path(self.cache_dir) / self.cache_file

    @property
    def events_log_path(self) -> Path:
        return resolve_path(self.cache_dir) / DEFAULT_EVENTS_LOG_FILE

    @property
    def env_path(self) -> Path:
        return env_file_path(self.cache_dir)

    @property
    def feed_url(self) -> str:
        return feed_url(self.repo, api_base=self.api_base)


def build_settings(
    *,
    repo: Optional[str] = None,
    api_base: Optional[str] = None,
    cache_dir: Optional[str] = None,
    cache_file: Optional[str] = None,
    retention: Optional[int] = None,
    timeout: Optional[float] = None,
    persist_always: Optional[bool] = None,
) -> Settings:
    initial_cache_dir = cache_dir or os.environ.get(ENV_CACHE_DIR) or default_cache_dir()
    file_env = load_env_file(env_file_path(str(resolve_path(initial_cache_dir))))
    merged = dict(file_env)
    merged.update(os.environ)

    resolved_cache_dir = str(resolve_path(cache_dir or merged.get(ENV_CACHE_DIR) or initial_cache_dir))
    resolved_repo = validate_repo(repo or merged.get(ENV_REPO) or DEFAULT_REPO)
    resolved_api_base = (api_base or merged.get(ENV_API_BASE) or DEFAULT_API_BASE).strip().rstrip("/")
    resolved_api_base = resolved_api_base or DEFAULT_API_BASE
    resolved_cache_file = (cache_file or merged.get(ENV_CACHE_FILE) or DEFAULT_CACHE_FILE).strip()
    resolved_cache_file = resolved_cache_file or DEFAULT_CACHE_FILE

    if retention is None:
        resolved_retention = parse_positive_int(merged.get(ENV_RETENTION), default=DEFAULT_RETENTION)
    else:
        resolved_retention = max(1, int(retention))

    if timeout is None:
        resolved_timeout = parse_positive_float(merged.get(ENV_TIMEOUT), default=DEFAULT_TIMEOUT)
    else:
        resolved_timeout = max(0.1, float(timeout))

    if persist_always is None:
        resolved_persist_always = parse_bool(merged.get(ENV_PERSIST_ALWAYS), default=False)
    else:
        resolved_persist_always = bool(persist_always)

    return Settings(
        repo=resolved_repo,
        api_base=resolved_api_base,
        cache_dir=resolved_cache_dir,
        cache_file=resolved_cache_file,
        retention=resolved_retention,
        timeout=resolved_timeout,
        persist_always=resolved_persist_always,
    )
