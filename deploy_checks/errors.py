"""Exceptions raised by the verification engine.

Network failures during a probe are never raised; they are captured in
``ProbeOutcome.error_kind``. Only configuration mistakes surface as exceptions,
and they do so before any polling begins.
"""

from __future__ import annotations


class SessionConfigError(ValueError):
    """Invalid session configuration (no targets, bad bounds, malformed URL)."""
