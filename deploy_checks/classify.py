from __future__ import annotations

from enum import IntEnum
from typing import Callable

from .probe import ErrorKind, ProbeOutcome, ProbeTarget


class HealthState(IntEnum):
    """Health of one endpoint, ordered from worst to best."""

    UNREACHABLE = 0
    ERROR = 1
    PLACEHOLDER_BUILD = 2
    DEGRADED = 3
    HEALTHY = 4

    @property
    def label(self) -> str:
        return self.name.lower()


_Rule = Callable[[ProbeOutcome, ProbeTarget], bool]


def _has_error(outcome: ProbeOutcome, target: ProbeTarget) -> bool:
    return outcome.error_kind is not ErrorKind.NONE


def _bad_status(outcome: ProbeOutcome, target: ProbeTarget) -> bool:
    return not (200 <= outcome.status_code <= 399)


def _placeholder_hit(outcome: ProbeOutcome, target: ProbeTarget) -> bool:
    return any(m and m in outcome.body_snippet for m in target.placeholder_markers)


def _production_match(outcome: ProbeOutcome, target: ProbeTarget) -> bool:
    markers = [m for m in target.production_markers if m]
    return bool(markers) and all(m in outcome.body_snippet for m in markers)


# First match wins.
CLASSIFICATION_RULES: tuple[tuple[_Rule, HealthState], ...] = (
    (_has_error, HealthState.UNREACHABLE),
    (_bad_status, HealthState.ERROR),
    (_placeholder_hit, HealthState.PLACEHOLDER_BUILD),
    (_production_match, HealthState.HEALTHY),
)


def classify(outcome: ProbeOutcome, target: ProbeTarget) -> HealthState:
    for rule, state in CLASSIFICATION_RULES:
        if rule(outcome, target):
            return state
    # Reachable, acceptable status, markers inconclusive.
    return HealthState.DEGRADED
