from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterator

from .classify import HealthState
from .probe import ProbeOutcome, ProbeTarget


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({SessionState.SUCCEEDED, SessionState.EXHAUSTED, SessionState.ABORTED})


@dataclass(frozen=True)
class TargetResult:
    target: ProbeTarget
    outcome: ProbeOutcome
    state: HealthState


@dataclass(frozen=True)
class RoundResult:
    """Classified outcomes of one round, one entry per configured target in configuration order."""

    attempt: int
    started_at: datetime
    results: tuple[TargetResult, ...]

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self) -> Iterator[TargetResult]:
        return iter(self.results)

    def __getitem__(self, target: ProbeTarget) -> TargetResult:
        for result in self.results:
            if result.target == target:
                return result
        raise KeyError(target)

    def get(self, target: ProbeTarget) -> TargetResult | None:
        try:
            return self[target]
        except KeyError:
            return None

    def targets(self) -> list[ProbeTarget]:
        return [r.target for r in self.results]

    def states(self) -> list[HealthState]:
        return [r.state for r in self.results]

    @property
    def healthy_count(self) -> int:
        return sum(1 for r in self.results if r.state is HealthState.HEALTHY)

    @property
    def success_rate(self) -> float:
        if not self.results:
            return 0.0
        return self.healthy_count / len(self.results)

    @property
    def all_healthy(self) -> bool:
        return bool(self.results) and self.healthy_count == len(self.results)
