"""
Error taxonomy for the legacy synchronization pipeline.

Only ``PhaseFailure`` ever crosses the orchestrator boundary. Skipped rows are
accounted for with ``SkippedRow`` values and a warning log; a busy trigger is a
``TriggerResult.REJECTED`` return, not an exception.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class LegacySyncError(Exception):
    """Base class for errors raised by the legacy sync package."""


def root_cause_message(exc: BaseException) -> str:
    """
    Walk chained exceptions down to the most specific message.

    Store errors from SQLAlchemy wrap the DBAPI exception in ``orig``; other
    layers chain through ``__cause__`` or ``__context__``.
    """
    current: BaseException = exc
    seen: set[int] = set()
    while id(current) not in seen:
        seen.add(id(current))
        nested = getattr(current, "orig", None)
        if isinstance(nested, BaseException):
            current = nested
            continue
        nested = current.__cause__ or current.__context__
        if nested is None:
            break
        current = nested
    message = str(current).strip()
    return message or current.__class__.__name__


class PhaseFailure(LegacySyncError):
    """A phase raised; the run was aborted and recorded as failed."""

    def __init__(self, phase: str, cause: BaseException, run_id: int | None = None):
        self.phase = phase
        self.cause = cause
        self.run_id = run_id
        self.root_message = root_cause_message(cause)
        super().__init__(f"Legacy sync phase '{phase}' failed: {self.root_message}")


@dataclass(frozen=True)
class SkippedRow:
    """A source row that was deliberately not written to the destination."""

    phase: str
    source_id: str
    reason: str
    key: str | None = None

    def describe(self) -> str:
        key = f" (key={self.key!r})" if self.key is not None else ""
        return f"{self.phase}: skipped source row {self.source_id}: {self.reason}{key}"


class TriggerResult(str, enum.Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
