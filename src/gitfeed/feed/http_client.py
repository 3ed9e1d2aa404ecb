from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
from urllib.error import HTTPError
from urllib.parse import quote, urlsplit
from urllib.request import Request, urlopen

from gitfeed import __version__

DEFAULT_USER_AGENT = f"gitfeed/{__version__}"
GITHUB_ACCEPT = "application/vnd.github+json"


@dataclass(frozen=True)
class FeedResponse:
    status: int
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def validate_repo(repo: str) -> str:
    slug = str(repo or "").strip().strip("/")
    parts = slug.split("/")
    if len(parts) != 2 or not all(part.strip() for part in parts):
        raise ValueError(f"repository must look like 'owner/name', got {repo!r}")
    return slug


def feed_url(repo: str, *, api_base: str = "https://api.github.com") -> str:
    owner, name = validate_repo(repo).split("/")
    base = str(api_base or "").strip().rstrip("/")
    parsed = urlsplit(base)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"api base must be an http(s) url, got {api_base!r}")
    return f"{base}/repos/{quote(owner.strip())}/{quote(name.strip())}/events"


def fetch_feed(
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 10.0,
) -> FeedResponse:
    """Issue one GET and return the status with the raw body.

    Non-2xx answers come back as a response; transport failures raise
    ``OSError`` (``URLError`` and socket timeouts included).
    """
    req_headers = {"Accept": GITHUB_ACCEPT, "User-Agent": DEFAULT_USER_AGENT}
    if headers:
        req_headers.update(headers)
    req = Request(url=url, method="GET", headers=req_headers)
    try:
        with urlopen(req, timeout=timeout) as resp:
            return FeedResponse(status=int(resp.status), body=resp.read())
    except HTTPError as exc:
        body = exc.read() if exc.fp else b""
        return FeedResponse(status=int(exc.code), body=body)
