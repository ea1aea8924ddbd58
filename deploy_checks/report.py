"""Aggregation of a finished session into an immutable report.

``build_report`` is the only place where per-endpoint health turns into advice.
Recommendations come from a fixed, ordered rule table; every matching rule adds
one line, and a fallback rule keeps the table total.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Mapping

from .classify import HealthState
from .rounds import RoundResult, SessionState, TargetResult

VERDICT_PRODUCTION_READY = "production_ready"
VERDICT_BUILD_IN_PROGRESS = "build_in_progress"
VERDICT_SERVICE_DOWN = "service_down"
VERDICT_PARTIAL = "partial"

FALLBACK_RECOMMENDATION = "Review the endpoint results manually: no rule matched this result shape."


@dataclass(frozen=True)
class EndpointSummary:
    label: str
    url: str
    state: HealthState
    status_code: int
    elapsed_ms: float
    error_kind: str
    error: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "url": self.url,
            "state": self.state.label,
            "status_code": self.status_code,
            "elapsed_ms": self.elapsed_ms,
            "error_kind": self.error_kind,
            "error": self.error,
        }


@dataclass(frozen=True)
class Report:
    success_rate: float
    state_histogram: Mapping[HealthState, int]
    recommendations: tuple[str, ...]
    generated_at: datetime
    terminal_state: SessionState
    attempts: int
    verdict: str
    endpoints: tuple[EndpointSummary, ...]

    @property
    def succeeded(self) -> bool:
        return self.terminal_state is SessionState.SUCCEEDED

    @property
    def success_percent(self) -> int:
        return int(round(self.success_rate * 100))

    def to_dict(self) -> dict[str, Any]:
        return {
            "success_rate": round(self.success_rate, 6),
            "state_histogram": {state.label: count for state, count in self.state_histogram.items()},
            "recommendations": list(self.recommendations),
            "generated_at": self.generated_at.isoformat(),
            "terminal_state": self.terminal_state.value,
            "attempts": self.attempts,
            "verdict": self.verdict,
            "endpoints": [e.to_dict() for e in self.endpoints],
        }

    def to_json(self, *, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)


@dataclass(frozen=True)
class _Tally:
    histogram: dict[HealthState, int]
    results: tuple[TargetResult, ...]
    terminal_state: SessionState
    attempts: int

    @property
    def total(self) -> int:
        return len(self.results)

    def count(self, state: HealthState) -> int:
        return self.histogram.get(state, 0)

    def has(self, state: HealthState) -> bool:
        return self.count(state) > 0

    def only(self, state: HealthState) -> bool:
        return self.total > 0 and self.count(state) == self.total

    def labels(self, state: HealthState) -> str:
        return ", ".join(r.target.label for r in self.results if r.state is state)


_Predicate = Callable[[_Tally], bool]
_Render = Callable[[_Tally], str]

RECOMMENDATION_RULES: tuple[tuple[_Predicate, _Render], ...] = (
    (
        lambda t: t.only(HealthState.HEALTHY),
        lambda t: "Deployment verified, safe to proceed.",
    ),
    (
        lambda t: t.has(HealthState.PLACEHOLDER_BUILD),
        lambda t: (
            "Wait and re-poll: build likely still in progress "
            f"(placeholder page served by {t.labels(HealthState.PLACEHOLDER_BUILD)})."
        ),
    ),
    (
        lambda t: t.only(HealthState.UNREACHABLE),
        lambda t: "Check service and network configuration: no endpoint is reachable.",
    ),
    (
        lambda t: t.has(HealthState.UNREACHABLE) and not t.only(HealthState.UNREACHABLE),
        lambda t: f"Check routing for unreachable endpoints: {t.labels(HealthState.UNREACHABLE)}.",
    ),
    (
        lambda t: t.has(HealthState.ERROR) and t.has(HealthState.HEALTHY),
        lambda t: f"Investigate failing endpoints individually: {t.labels(HealthState.ERROR)}.",
    ),
    (
        lambda t: t.has(HealthState.ERROR) and not t.has(HealthState.HEALTHY),
        lambda t: "Inspect build and runtime logs: every reachable endpoint returns an error status.",
    ),
    (
        lambda t: t.has(HealthState.DEGRADED),
        lambda t: (
            "Review content markers for degraded endpoints "
            f"(reachable but not confirmed as production): {t.labels(HealthState.DEGRADED)}."
        ),
    ),
    (
        lambda t: t.terminal_state is SessionState.EXHAUSTED,
        lambda t: f"Polling exhausted after {t.attempts} attempts, check the build logs.",
    ),
    (
        lambda t: t.terminal_state is SessionState.ABORTED,
        lambda t: "Verification aborted before completion, re-run to confirm.",
    ),
)


def recommend(tally: _Tally) -> tuple[str, ...]:
    lines = [render(tally) for predicate, render in RECOMMENDATION_RULES if predicate(tally)]
    if not lines:
        lines.append(FALLBACK_RECOMMENDATION)
    return tuple(lines)


def _verdict(tally: _Tally) -> str:
    if tally.only(HealthState.HEALTHY):
        return VERDICT_PRODUCTION_READY
    if tally.has(HealthState.PLACEHOLDER_BUILD):
        return VERDICT_BUILD_IN_PROGRESS
    if tally.only(HealthState.UNREACHABLE):
        return VERDICT_SERVICE_DOWN
    return VERDICT_PARTIAL


def build_report(
    latest_round: RoundResult,
    terminal_state: SessionState,
    *,
    generated_at: datetime | None = None,
) -> Report:
    if generated_at is None:
        generated_at = datetime.now(timezone.utc)

    histogram = {state: 0 for state in HealthState}
    for result in latest_round.results:
        histogram[result.state] += 1

    tally = _Tally(
        histogram=histogram,
        results=latest_round.results,
        terminal_state=terminal_state,
        attempts=latest_round.attempt,
    )
    endpoints = tuple(
        EndpointSummary(
            label=r.target.label,
            url=r.target.url,
            state=r.state,
            status_code=r.outcome.status_code,
            elapsed_ms=r.outcome.elapsed_ms,
            error_kind=r.outcome.error_kind.value,
            error=r.outcome.error,
        )
        for r in latest_round.results
    )
    return Report(
        success_rate=latest_round.success_rate,
        state_histogram=MappingProxyType(histogram),
        recommendations=recommend(tally),
        generated_at=generated_at,
        terminal_state=terminal_state,
        attempts=latest_round.attempt,
        verdict=_verdict(tally),
        endpoints=endpoints,
    )


_STATE_ICONS = {
    HealthState.HEALTHY: "✅",
    HealthState.DEGRADED: "🟡",
    HealthState.PLACEHOLDER_BUILD: "⏳",
    HealthState.ERROR: "❌",
    HealthState.UNREACHABLE: "⛔",
}

_TERMINAL_HEADLINES = {
    SessionState.SUCCEEDED: "Deployment verified ✅",
    SessionState.EXHAUSTED: "Deployment NOT verified ❌",
    SessionState.ABORTED: "Verification aborted ⚠️",
}


def _format_ms(value: float) -> str:
    return f"{int(round(float(value)))}ms"


def _endpoint_line(e: EndpointSummary) -> str:
    icon = _STATE_ICONS.get(e.state, "?")
    if e.error_kind != "none":
        return f"{icon} {e.label}: {e.state.label} ({e.error_kind}, {_format_ms(e.elapsed_ms)})"
    return f"{icon} {e.label}: {e.state.label} (HTTP {e.status_code}, {_format_ms(e.elapsed_ms)})"


def report_text_sections(report: Report) -> tuple[str, str, str]:
    """Headline block, endpoint lines, recommendations; each free of blank lines."""
    total = len(report.endpoints)
    healthy = report.state_histogram.get(HealthState.HEALTHY, 0)
    headline = "\n".join(
        [
            _TERMINAL_HEADLINES.get(report.terminal_state, report.terminal_state.value),
            f"Verdict: {report.verdict}",
            f"Attempts: {report.attempts}",
            f"Health: {healthy}/{total} ({report.success_percent}%)",
            f"Generated: {report.generated_at.isoformat()}",
        ]
    )
    endpoints = "\n".join(_endpoint_line(e) for e in report.endpoints)
    recommendations = "\n".join(["Recommendations:", *(f"- {r}" for r in report.recommendations)])
    return headline, endpoints, recommendations


def format_report_text(report: Report) -> str:
    return "\n\n".join(s for s in report_text_sections(report) if s)


def format_report_markdown(report: Report) -> str:
    total = len(report.endpoints)
    healthy = report.state_histogram.get(HealthState.HEALTHY, 0)
    lines = [
        f"# {_TERMINAL_HEADLINES.get(report.terminal_state, report.terminal_state.value)}",
        "",
        "## Summary",
        f"- **Generated**: {report.generated_at.isoformat()}",
        f"- **Terminal state**: {report.terminal_state.value}",
        f"- **Verdict**: {report.verdict}",
        f"- **Attempts**: {report.attempts}",
        f"- **Success rate**: {report.success_percent}% ({healthy}/{total})",
        "",
        "## Endpoints",
        "| Endpoint | State | Status | Elapsed | Error |",
        "|---|---|---|---|---|",
    ]
    for e in report.endpoints:
        error = (e.error or "").replace("|", "/") if e.error_kind != "none" else ""
        lines.append(
            f"| [{e.label}]({e.url}) | {_STATE_ICONS.get(e.state, '')} {e.state.label} "
            f"| {e.status_code or '-'} | {_format_ms(e.elapsed_ms)} | {error} |"
        )
    lines.extend(["", "## Histogram"])
    lines.extend(f"- {state.label}: {count}" for state, count in report.state_histogram.items())
    lines.extend(["", "## Recommendations"])
    lines.extend(f"- {r}" for r in report.recommendations)
    return "\n".join(lines) + "\n"
