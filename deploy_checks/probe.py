from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urljoin, urlsplit, urlunsplit

import httpx
import structlog

from .errors import SessionConfigError

logger = structlog.get_logger(__name__)

DEFAULT_SNIPPET_CHARS = 200

_HOST_CHARS = re.compile(r"^\[?[A-Za-z0-9._:\-]+\]?$")


class ErrorKind(str, Enum):
    NONE = "none"
    TIMEOUT = "timeout"
    CONNECTION_FAILED = "connection_failed"


@dataclass(frozen=True)
class ProbeTarget:
    """One endpoint of the service under verification.

    Markers are opt-in per target: without ``production_markers`` a target can
    never classify as healthy, without ``placeholder_markers`` it can never be
    flagged as a placeholder build.
    """

    base_url: str
    path: str = "/"
    production_markers: tuple[str, ...] = field(default_factory=tuple)
    placeholder_markers: tuple[str, ...] = field(default_factory=tuple)
    name: str | None = None

    @property
    def url(self) -> str:
        return urljoin(self.base_url.rstrip("/") + "/", (self.path or "").lstrip("/"))

    @property
    def label(self) -> str:
        return self.name or self.path or "/"


@dataclass(frozen=True)
class ProbeOutcome:
    status_code: int
    body_snippet: str
    elapsed_ms: float
    error_kind: ErrorKind = ErrorKind.NONE
    error: str | None = None
    final_url: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_kind is ErrorKind.NONE


def _safe_url(url: str) -> str:
    """
    Drop querystrings and fragments so tokens in URLs never reach logs or reports.
    """
    s = (url or "").strip()
    if not s:
        return s
    try:
        parts = urlsplit(s)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    except ValueError:
        return s[:500]


def validate_target_url(url: str) -> None:
    if any(ch.isspace() for ch in url or ""):
        raise SessionConfigError(f"Target URL {url!r} contains whitespace")
    try:
        parsed = httpx.URL(url)
        port = parsed.port
    except (httpx.InvalidURL, TypeError, ValueError) as exc:
        raise SessionConfigError(f"Malformed target URL {url!r}: {exc}") from exc
    if parsed.scheme not in ("http", "https"):
        raise SessionConfigError(f"Target URL {url!r} must use http or https")
    if not parsed.host:
        raise SessionConfigError(f"Target URL {url!r} has no host")
    # raw_host is the IDNA-encoded form, so international names pass as punycode.
    if not _HOST_CHARS.match(parsed.raw_host.decode("ascii", errors="replace")):
        raise SessionConfigError(f"Target URL {url!r} has an invalid host")
    if port is not None and not 1 <= port <= 65535:
        raise SessionConfigError(f"Target URL {url!r} has port {port} outside 1-65535")


async def probe(
    target: ProbeTarget,
    client: httpx.AsyncClient,
    *,
    timeout_seconds: float,
    snippet_chars: int = DEFAULT_SNIPPET_CHARS,
) -> ProbeOutcome:
    """Issue a single GET against ``target`` and capture what happened.

    Network failures are folded into the returned outcome. A request running past
    ``timeout_seconds`` is cancelled outright, not just timed out per socket read.
    HTTP error statuses are returned as-is; judging them is the classifier's job.
    """
    url = target.url
    started = time.perf_counter()
    try:
        resp = await asyncio.wait_for(
            client.get(url, follow_redirects=True, timeout=timeout_seconds),
            timeout=timeout_seconds,
        )
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        logger.debug("Probe timed out", url=_safe_url(url), elapsed_ms=round(elapsed_ms, 3))
        return ProbeOutcome(
            status_code=0,
            body_snippet="",
            elapsed_ms=round(elapsed_ms, 3),
            error_kind=ErrorKind.TIMEOUT,
            error=f"timeout after {timeout_seconds:g}s: {type(e).__name__}",
        )
    except (httpx.HTTPError, httpx.InvalidURL, OSError, OverflowError, ValueError) as e:
        # Socket-level errors (e.g. a port the OS rejects) can surface unwrapped.
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        logger.debug("Probe connection failed", url=_safe_url(url), error=type(e).__name__)
        return ProbeOutcome(
            status_code=0,
            body_snippet="",
            elapsed_ms=round(elapsed_ms, 3),
            error_kind=ErrorKind.CONNECTION_FAILED,
            error=f"{type(e).__name__}: {e}"[:500],
        )

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    body = resp.text or ""
    return ProbeOutcome(
        status_code=int(resp.status_code),
        body_snippet=body[: max(0, int(snippet_chars))],
        elapsed_ms=round(elapsed_ms, 3),
        final_url=_safe_url(str(resp.url)),
    )
