"""Invocation traces.

One trace per compiler invocation, recorded whatever the outcome: a fresh
correlation id, timing, the protocol actually used and the captured
stderr. Traces go to the structured log and to a bounded in-memory ring
for inspection; they are never persisted and never returned to callers.
"""

from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from uuid import UUID

import structlog

from solbroker.models.common import new_uuid7, utc_now

logger = structlog.get_logger(__name__)


@dataclass
class InvocationTrace:
    """Diagnostics for a single compiler invocation."""

    version: str
    correlation_id: UUID = field(default_factory=new_uuid7)
    protocol: str = ""
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    elapsed_ms: float = 0.0
    stderr: str = ""
    exit_code: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def finish(self, *, error: str | None = None) -> None:
        self.finished_at = utc_now()
        self.elapsed_ms = (self.finished_at - self.started_at).total_seconds() * 1000.0
        self.error = error

    def to_dict(self) -> dict:
        data = asdict(self)
        data["correlation_id"] = str(self.correlation_id)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


class TraceRecorder:
    """Logs traces and keeps the most recent ones in memory."""

    def __init__(self, capacity: int = 256) -> None:
        self._traces: deque[InvocationTrace] = deque(maxlen=capacity)

    def record(self, trace: InvocationTrace) -> None:
        self._traces.append(trace)
        log = logger.info if trace.ok else logger.warning
        log("invocation_trace", **trace.to_dict())

    def recent(self) -> list[InvocationTrace]:
        """Oldest first."""
        return list(self._traces)
