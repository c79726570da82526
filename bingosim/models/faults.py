"""Fault taxonomy for the execution engine.

Run-local faults are converted into a ``Fault`` value at the run boundary and
returned to the dispatcher inside a ``RunOutcome``; they never escape to
sibling runs. Claim/publish failures raise ``DispatchError`` and stop only the
affected consumer or message.
"""

from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID

from bingosim.models.common import RunStatus

MAX_CAUSE_LENGTH = 500


class FaultKind(StrEnum):
    NOT_FOUND = "NOT_FOUND"
    RUN_FAULT = "RUN_FAULT"
    DISPATCH_FAULT = "DISPATCH_FAULT"
    SERIALIZATION_FAULT = "SERIALIZATION_FAULT"


class NotFoundError(KeyError):
    """A referenced entity is missing. Always carries the missing identifier."""

    def __init__(self, entity: str, identifier: object) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")

    def __str__(self) -> str:
        return f"{self.entity} {self.identifier} not found"


class SnapshotUnreadableError(ValueError):
    """A stored board snapshot payload could not be deserialized."""


class DispatchError(RuntimeError):
    """Claiming or publishing work failed."""


@dataclass(frozen=True)
class Fault:
    kind: FaultKind
    message: str
    identifier: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "Fault":
        if isinstance(exc, NotFoundError):
            return cls(FaultKind.NOT_FOUND, summarize_cause(exc), str(exc.identifier))
        if isinstance(exc, SnapshotUnreadableError):
            return cls(FaultKind.SERIALIZATION_FAULT, summarize_cause(exc))
        if isinstance(exc, DispatchError):
            return cls(FaultKind.DISPATCH_FAULT, summarize_cause(exc))
        return cls(FaultKind.RUN_FAULT, summarize_cause(exc))


@dataclass(frozen=True)
class RunOutcome:
    """What one executor invocation did to one run."""

    run_id: UUID
    status: RunStatus | None
    fault: Fault | None = None
    executed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED and self.fault is None


def summarize_cause(exc: BaseException) -> str:
    """Render an exception as a short cause string for run.last_error."""
    text = f"{type(exc).__name__}: {exc}"
    if len(text) > MAX_CAUSE_LENGTH:
        text = text[: MAX_CAUSE_LENGTH - 3] + "..."
    return text
