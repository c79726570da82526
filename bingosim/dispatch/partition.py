"""Worker partitioning: which runs a distributed worker prefers to execute.

The worker ordinal is resolved once at startup: an explicit WORKER_INDEX
wins; otherwise it is derived from the trailing replica number of the host
identifier ("svc_worker_2" or "svc-2" is replica 2, index 1). A derived index
outside [0, WORKER_COUNT) disables partitioning for the process.

Partitioning only balances load. Two workers can never both execute one run
because runs are claimed atomically.
"""

import logging
import re
from dataclasses import dataclass
from uuid import UUID

from bingosim.config.settings import Settings

logger = logging.getLogger(__name__)

_REPLICA_SUFFIX = re.compile(r"[_-](\d+)$")

SHARED_QUEUE = "bingosim-runs"


def resolve_worker_index(
    host_id: str | None,
    worker_count: int,
    explicit_index: int | None = None,
) -> int | None:
    """Worker ordinal for this process, or None when partitioning is off."""
    if explicit_index is not None:
        return explicit_index
    match = _REPLICA_SUFFIX.search((host_id or "").strip())
    if match is None:
        return None
    index = int(match.group(1)) - 1
    if index < 0 or index >= worker_count:
        logger.warning(
            "Host %r maps to worker index %d outside [0, %d); partitioning disabled",
            host_id, index, worker_count,
        )
        return None
    return index


def partition_key(run_id: UUID, worker_count: int) -> int:
    """Stable partition of a run id in [0, worker_count)."""
    return run_id.int % worker_count


def partition_queue(index: int) -> str:
    return f"{SHARED_QUEUE}-{index}"


@dataclass(frozen=True)
class WorkerPartition:
    worker_index: int | None
    worker_count: int = 1

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkerPartition":
        index = resolve_worker_index(
            settings.HOSTNAME, settings.WORKER_COUNT, settings.WORKER_INDEX,
        )
        if index is not None and index >= settings.WORKER_COUNT:
            logger.warning(
                "WORKER_INDEX %d >= WORKER_COUNT %d; partitioning disabled",
                index, settings.WORKER_COUNT,
            )
            index = None
        return cls(worker_index=index, worker_count=settings.WORKER_COUNT)

    @property
    def enabled(self) -> bool:
        return self.worker_index is not None and self.worker_count > 1

    def owns(self, run_id: UUID) -> bool:
        if not self.enabled:
            return True
        return partition_key(run_id, self.worker_count) == self.worker_index

    def split(self, run_ids: list[UUID]) -> tuple[list[UUID], list[UUID]]:
        """Split ids into (owned, foreign)."""
        owned = [r for r in run_ids if self.owns(r)]
        foreign = [r for r in run_ids if not self.owns(r)]
        return owned, foreign

    def queues(self) -> list[str]:
        """Queues this worker consumes."""
        if not self.enabled:
            return [SHARED_QUEUE] + [partition_queue(k) for k in range(self.worker_count)]
        return [SHARED_QUEUE, partition_queue(self.worker_index)]
