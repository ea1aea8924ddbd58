from __future__ import annotations

import itertools
import json
from datetime import datetime, timezone

import pytest

from deploy_checks.classify import HealthState
from deploy_checks.probe import ErrorKind, ProbeOutcome, ProbeTarget
from deploy_checks.report import (
    FALLBACK_RECOMMENDATION,
    VERDICT_BUILD_IN_PROGRESS,
    VERDICT_PARTIAL,
    VERDICT_PRODUCTION_READY,
    VERDICT_SERVICE_DOWN,
    build_report,
    format_report_markdown,
    format_report_text,
)
from deploy_checks.rounds import RoundResult, SessionState, TargetResult

GENERATED_AT = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def _round(states: list[HealthState], attempt: int = 1) -> RoundResult:
    results = []
    for i, state in enumerate(states):
        target = ProbeTarget(base_url="https://svc.example.com", path=f"/e{i}")
        if state is HealthState.UNREACHABLE:
            outcome = ProbeOutcome(status_code=0, body_snippet="", elapsed_ms=10.0, error_kind=ErrorKind.TIMEOUT, error="timeout")
        elif state is HealthState.ERROR:
            outcome = ProbeOutcome(status_code=500, body_snippet="boom", elapsed_ms=20.0)
        else:
            outcome = ProbeOutcome(status_code=200, body_snippet="ok", elapsed_ms=30.0)
        results.append(TargetResult(target=target, outcome=outcome, state=state))
    return RoundResult(attempt=attempt, started_at=GENERATED_AT, results=tuple(results))


def test_histogram_covers_every_state_in_order() -> None:
    report = build_report(
        _round([HealthState.HEALTHY, HealthState.ERROR, HealthState.HEALTHY]),
        SessionState.EXHAUSTED,
        generated_at=GENERATED_AT,
    )
    assert list(report.state_histogram) == list(HealthState)
    assert report.state_histogram[HealthState.HEALTHY] == 2
    assert report.state_histogram[HealthState.ERROR] == 1
    assert report.state_histogram[HealthState.DEGRADED] == 0
    assert report.success_rate == pytest.approx(2 / 3)
    assert report.success_percent == 67


def test_build_is_deterministic_with_injected_timestamp() -> None:
    rnd = _round([HealthState.HEALTHY, HealthState.PLACEHOLDER_BUILD, HealthState.UNREACHABLE])
    first = build_report(rnd, SessionState.EXHAUSTED, generated_at=GENERATED_AT)
    second = build_report(rnd, SessionState.EXHAUSTED, generated_at=GENERATED_AT)
    assert first == second
    assert first.to_json() == second.to_json()


def test_default_timestamp_is_aware_utc() -> None:
    report = build_report(_round([HealthState.HEALTHY]), SessionState.SUCCEEDED)
    assert report.generated_at.tzinfo is not None


@pytest.mark.parametrize("size", [1, 2, 3])
@pytest.mark.parametrize("terminal", [SessionState.SUCCEEDED, SessionState.EXHAUSTED, SessionState.ABORTED])
def test_recommendations_are_total(size: int, terminal: SessionState) -> None:
    for states in itertools.product(list(HealthState), repeat=size):
        report = build_report(_round(list(states)), terminal, generated_at=GENERATED_AT)
        assert report.recommendations, states
        assert FALLBACK_RECOMMENDATION not in report.recommendations, states


def test_all_healthy_recommends_proceeding() -> None:
    report = build_report(_round([HealthState.HEALTHY] * 3), SessionState.SUCCEEDED, generated_at=GENERATED_AT)
    assert report.recommendations == ("Deployment verified, safe to proceed.",)
    assert report.verdict == VERDICT_PRODUCTION_READY
    assert report.succeeded


def test_all_unreachable_recommends_checking_configuration() -> None:
    report = build_report(_round([HealthState.UNREACHABLE] * 2), SessionState.EXHAUSTED, generated_at=GENERATED_AT)
    assert any("Check service and network configuration" in r for r in report.recommendations)
    assert not any("Check routing" in r for r in report.recommendations)
    assert report.verdict == VERDICT_SERVICE_DOWN


def test_mixed_error_and_healthy_names_failing_endpoints() -> None:
    report = build_report(
        _round([HealthState.HEALTHY, HealthState.ERROR]), SessionState.EXHAUSTED, generated_at=GENERATED_AT
    )
    line = next(r for r in report.recommendations if r.startswith("Investigate failing endpoints individually"))
    assert "/e1" in line
    assert "/e0" not in line
    assert report.verdict == VERDICT_PARTIAL


def test_placeholder_recommends_waiting() -> None:
    report = build_report(
        _round([HealthState.PLACEHOLDER_BUILD, HealthState.UNREACHABLE]),
        SessionState.ABORTED,
        generated_at=GENERATED_AT,
    )
    assert report.recommendations[0].startswith("Wait and re-poll")
    assert any("Check routing for unreachable endpoints: /e1" in r for r in report.recommendations)
    assert report.recommendations[-1] == "Verification aborted before completion, re-run to confirm."
    assert report.verdict == VERDICT_BUILD_IN_PROGRESS


def test_to_dict_shape() -> None:
    report = build_report(
        _round([HealthState.HEALTHY, HealthState.UNREACHABLE], attempt=4),
        SessionState.EXHAUSTED,
        generated_at=GENERATED_AT,
    )
    data = json.loads(report.to_json())
    assert data["success_rate"] == 0.5
    assert data["state_histogram"] == {
        "unreachable": 1,
        "error": 0,
        "placeholder_build": 0,
        "degraded": 0,
        "healthy": 1,
    }
    assert data["generated_at"] == "2025-06-01T12:00:00+00:00"
    assert data["terminal_state"] == "exhausted"
    assert data["attempts"] == 4
    assert data["endpoints"][1]["error_kind"] == "timeout"
    assert data["endpoints"][1]["url"] == "https://svc.example.com/e1"
    assert isinstance(data["recommendations"], list)


def test_text_and_markdown_rendering() -> None:
    report = build_report(
        _round([HealthState.HEALTHY, HealthState.ERROR]), SessionState.EXHAUSTED, generated_at=GENERATED_AT
    )
    text = format_report_text(report)
    assert text.startswith("Deployment NOT verified")
    assert "Health: 1/2 (50%)" in text
    assert "/e1: error (HTTP 500" in text
    assert "Recommendations:" in text

    md = format_report_markdown(report)
    assert md.startswith("# Deployment NOT verified")
    assert "| Endpoint | State | Status | Elapsed | Error |" in md
    assert "[/e0](https://svc.example.com/e0)" in md


def test_report_histogram_is_read_only() -> None:
    report = build_report(_round([HealthState.HEALTHY]), SessionState.SUCCEEDED, generated_at=GENERATED_AT)
    with pytest.raises(TypeError):
        report.state_histogram[HealthState.HEALTHY] = 99  # type: ignore[index]
    assert report.state_histogram[HealthState.HEALTHY] == 1
    assert report.to_dict()["state_histogram"]["healthy"] == 1
