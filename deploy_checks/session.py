from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable

import httpx
import structlog

from .classify import HealthState, classify
from .errors import SessionConfigError
from .probe import DEFAULT_SNIPPET_CHARS, ErrorKind, ProbeOutcome, ProbeTarget, probe, validate_target_url
from .report import Report, build_report
from .rounds import RoundResult, SessionState, TargetResult

logger = structlog.get_logger(__name__)

Prober = Callable[[ProbeTarget], Awaitable[ProbeOutcome]]
Clock = Callable[[], datetime]
RoundCallback = Callable[[RoundResult], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PollingSession:
    """Bounded polling of a fixed set of endpoints until they all classify as healthy.

    Rounds run one after another; the probes inside a round run concurrently and
    the round is only classified once every probe has returned. The session ends
    ``succeeded`` on the first all-healthy round, ``exhausted`` after
    ``max_attempts`` rounds without one, or ``aborted`` once ``cancel()`` is
    observed between rounds. The first round always runs, so every finished
    session has a last round and a report.
    """

    def __init__(
        self,
        targets: Iterable[ProbeTarget],
        *,
        max_attempts: int,
        interval_seconds: float,
        timeout_seconds: float,
        snippet_chars: int = DEFAULT_SNIPPET_CHARS,
        client: httpx.AsyncClient | None = None,
        prober: Prober | None = None,
        clock: Clock | None = None,
        on_round: RoundCallback | None = None,
    ):
        self.targets: tuple[ProbeTarget, ...] = tuple(targets)
        if not self.targets:
            raise SessionConfigError("At least one probe target is required")
        if isinstance(max_attempts, bool) or not isinstance(max_attempts, int) or max_attempts <= 0:
            raise SessionConfigError(f"max_attempts must be a positive integer, got {max_attempts!r}")
        if interval_seconds < 0:
            raise SessionConfigError(f"interval_seconds must be >= 0, got {interval_seconds!r}")
        if timeout_seconds <= 0:
            raise SessionConfigError(f"timeout_seconds must be > 0, got {timeout_seconds!r}")
        if len(set(self.targets)) != len(self.targets):
            raise SessionConfigError("Probe targets must be unique")
        for target in self.targets:
            validate_target_url(target.url)

        self.max_attempts = max_attempts
        self.interval_seconds = float(interval_seconds)
        self.timeout_seconds = float(timeout_seconds)
        self.snippet_chars = int(snippet_chars)

        self._client = client
        self._prober = prober
        self._clock = clock or _utcnow
        self._on_round = on_round

        self.state = SessionState.IDLE
        self.attempt_number = 0
        self.rounds: list[RoundResult] = []
        self.report: Report | None = None
        self._cancel = asyncio.Event()

    @property
    def terminal_state(self) -> SessionState | None:
        return self.state if self.state.is_terminal else None

    @property
    def last_round(self) -> RoundResult | None:
        return self.rounds[-1] if self.rounds else None

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Ask the session to stop; wakes an inter-round sleep immediately."""
        if not self._cancel.is_set():
            logger.info("Cancellation requested", attempt=self.attempt_number)
        self._cancel.set()

    async def run(self) -> Report:
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"Session already started (state={self.state.value})")

        self.state = SessionState.RUNNING
        self.attempt_number = 0
        logger.info(
            "Verification session started",
            targets=len(self.targets),
            max_attempts=self.max_attempts,
            interval_seconds=self.interval_seconds,
        )

        if self._prober is not None:
            return await self._poll(self._prober)
        if self._client is not None:
            return await self._poll(self._http_prober(self._client))
        async with httpx.AsyncClient() as client:
            return await self._poll(self._http_prober(client))

    def _http_prober(self, client: httpx.AsyncClient) -> Prober:
        async def _get(target: ProbeTarget) -> ProbeOutcome:
            return await probe(
                target,
                client,
                timeout_seconds=self.timeout_seconds,
                snippet_chars=self.snippet_chars,
            )

        return _get

    async def _poll(self, prober: Prober) -> Report:
        while True:
            self.attempt_number += 1
            round_result = await self._run_round(self.attempt_number, prober)
            self.rounds.append(round_result)
            self._log_round(round_result)
            if self._on_round is not None:
                self._on_round(round_result)

            if round_result.all_healthy:
                return self._finish(SessionState.SUCCEEDED, round_result)
            if self.attempt_number >= self.max_attempts:
                return self._finish(SessionState.EXHAUSTED, round_result)
            if self._cancel.is_set():
                return self._finish(SessionState.ABORTED, round_result)

            if await self._sleep_or_cancel(self.interval_seconds):
                return self._finish(SessionState.ABORTED, round_result)

    async def _run_round(self, attempt: int, prober: Prober) -> RoundResult:
        started_at = self._clock()
        outcomes = await asyncio.gather(*(self._probe(prober, t) for t in self.targets))
        results = tuple(
            TargetResult(target=target, outcome=outcome, state=classify(outcome, target))
            for target, outcome in zip(self.targets, outcomes)
        )
        return RoundResult(attempt=attempt, started_at=started_at, results=results)

    async def _probe(self, prober: Prober, target: ProbeTarget) -> ProbeOutcome:
        """Run one probe; anything it raises becomes a failed outcome for that target."""
        started = time.perf_counter()
        try:
            return await prober(target)
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            logger.warning("Probe raised", target=target.label, error=f"{type(e).__name__}: {e}")
            return ProbeOutcome(
                status_code=0,
                body_snippet="",
                elapsed_ms=round(elapsed_ms, 3),
                error_kind=ErrorKind.CONNECTION_FAILED,
                error=f"{type(e).__name__}: {e}"[:500],
            )

    async def _sleep_or_cancel(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if woken by cancellation."""
        if seconds <= 0:
            return self._cancel.is_set()
        try:
            await asyncio.wait_for(self._cancel.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def _finish(self, terminal: SessionState, last_round: RoundResult) -> Report:
        self.state = terminal
        self.report = build_report(last_round, terminal, generated_at=self._clock())
        logger.info(
            "Verification session finished",
            terminal_state=terminal.value,
            attempts=self.attempt_number,
            success_rate=round(self.report.success_rate, 4),
            verdict=self.report.verdict,
        )
        return self.report

    def _log_round(self, round_result: RoundResult) -> None:
        counts = {s.label: 0 for s in HealthState}
        for state in round_result.states():
            counts[state.label] += 1
        logger.info(
            "Round completed",
            attempt=round_result.attempt,
            max_attempts=self.max_attempts,
            healthy=round_result.healthy_count,
            total=len(round_result),
            success_rate=round(round_result.success_rate, 4),
            states={k: v for k, v in counts.items() if v},
        )
