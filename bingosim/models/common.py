"""Shared types, enums, and base models used across BingoSim domain models."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, Field
from uuid_extensions import uuid7


def utc_now() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def new_uuid7() -> UUID:
    """Generate a new time-sortable UUID v7."""
    return uuid7()


# --- Reusable annotated types ---

UUIDv7 = Annotated[UUID, Field(description="Time-sortable UUID v7.")]
UTCTimestamp = Annotated[
    datetime, Field(description="UTC timezone-aware timestamp.")
]


# --- Shared enums ---


class BatchStatus(StrEnum):
    """Lifecycle of a simulation batch."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class RunStatus(StrEnum):
    """Lifecycle of a single simulation run."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class ExecutionMode(StrEnum):
    """Where a batch's runs execute."""

    LOCAL = "LOCAL"
    DISTRIBUTED = "DISTRIBUTED"


class RollScope(StrEnum):
    """Whether a task's success roll is made per team member or once per group."""

    PER_PLAYER = "PER_PLAYER"
    PER_GROUP = "PER_GROUP"


class TimeDistribution(StrEnum):
    """Attempt-duration distribution of a task."""

    UNIFORM = "UNIFORM"
    NORMAL_APPROX = "NORMAL_APPROX"
    CUSTOM = "CUSTOM"


class TerminationReason(StrEnum):
    """Why a simulated run stopped."""

    BOARD_COMPLETE = "BOARD_COMPLETE"
    ATTEMPT_BUDGET = "ATTEMPT_BUDGET"
    TIME_BUDGET = "TIME_BUDGET"
    NO_ELIGIBLE_TASK = "NO_ELIGIBLE_TASK"


# --- Base model ---


class BingoSimBase(BaseModel):
    """Base model with shared configuration for all BingoSim domain objects."""

    model_config = {
        "populate_by_name": True,
        "protected_namespaces": (),
    }
