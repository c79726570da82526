"""Execution metrics: per-batch counters of run outcomes.

Store as structured MetricEvent objects, in memory. Each executor process
has its own store; batch progress shown to users comes from the database,
these counters describe what this process did.
"""

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from uuid import UUID

from bingosim.models.common import new_uuid7, utc_now


class MetricType(StrEnum):
    RUN_COMPLETED = "RUN_COMPLETED"
    RUN_FAILED = "RUN_FAILED"
    RUN_RETRIED = "RUN_RETRIED"
    RUN_CANCELLED = "RUN_CANCELLED"


@dataclass
class MetricEvent:
    """One recorded run outcome."""

    batch_id: UUID
    metric_type: MetricType
    run_id: UUID | None = None
    duration_seconds: float = 0.0
    event_id: UUID = field(default_factory=new_uuid7)
    timestamp: datetime = field(default_factory=utc_now)


class SimulationMetrics:
    """In-memory metrics store holding the most recent ``max_events`` events."""

    def __init__(self, max_events: int = 100_000) -> None:
        self._events: deque[MetricEvent] = deque(maxlen=max_events)

    def record(self, event: MetricEvent) -> None:
        self._events.append(event)

    def record_completed(self, batch_id: UUID, run_id: UUID, duration_seconds: float) -> None:
        self.record(MetricEvent(batch_id, MetricType.RUN_COMPLETED, run_id, duration_seconds))

    def record_failed(self, batch_id: UUID, run_id: UUID) -> None:
        self.record(MetricEvent(batch_id, MetricType.RUN_FAILED, run_id))

    def record_retried(self, batch_id: UUID, run_id: UUID) -> None:
        self.record(MetricEvent(batch_id, MetricType.RUN_RETRIED, run_id))

    def record_cancelled(self, batch_id: UUID, run_id: UUID) -> None:
        self.record(MetricEvent(batch_id, MetricType.RUN_CANCELLED, run_id))

    def get_by_batch(self, batch_id: UUID) -> list[MetricEvent]:
        return [e for e in self._events if e.batch_id == batch_id]

    def counts(self, batch_id: UUID) -> dict[MetricType, int]:
        """Event counts per type for one batch (zero-filled)."""
        counter = Counter(e.metric_type for e in self.get_by_batch(batch_id))
        return {t: counter.get(t, 0) for t in MetricType}

    def average_duration(self, batch_id: UUID) -> float:
        """Mean wall-clock seconds of completed runs. Returns 0.0 if none."""
        durations = [
            e.duration_seconds for e in self.get_by_batch(batch_id)
            if e.metric_type == MetricType.RUN_COMPLETED
        ]
        if not durations:
            return 0.0
        return sum(durations) / len(durations)
