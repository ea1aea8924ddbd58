"""Deployment health verification: poll endpoints until a deploy is verified or polling gives up."""

from .classify import HealthState, classify
from .errors import SessionConfigError
from .probe import ErrorKind, ProbeOutcome, ProbeTarget, probe
from .report import Report, build_report
from .rounds import RoundResult, SessionState, TargetResult
from .session import PollingSession

__all__ = [
    "ErrorKind",
    "HealthState",
    "PollingSession",
    "ProbeOutcome",
    "ProbeTarget",
    "Report",
    "RoundResult",
    "SessionConfigError",
    "SessionState",
    "TargetResult",
    "build_report",
    "classify",
    "probe",
]
