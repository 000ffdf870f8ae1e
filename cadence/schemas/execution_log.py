"""
Enrollment execution log entries.
Stored as a JSON list on Enrollment.execution_logs; each entry is tagged by "kind"
so the runner and stats reporting share one vocabulary.
"""
import uuid
from datetime import datetime
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter


class _LogEntry(BaseModel):
    timestamp: datetime
    step_id: Optional[uuid.UUID] = None


class Sent(_LogEntry):
    kind: Literal["sent"] = "sent"
    channel: str
    external_id: Optional[str] = None


class Deferred(_LogEntry):
    kind: Literal["deferred"] = "deferred"
    reason: str  # outside_window, throughput
    until: datetime


class Waiting(_LogEntry):
    kind: Literal["waiting"] = "waiting"
    until: datetime


class Branched(_LogEntry):
    kind: Literal["branched"] = "branched"
    outcome: bool
    to_step_index: Optional[int] = None


class Completed(_LogEntry):
    kind: Literal["completed"] = "completed"


class Failed(_LogEntry):
    kind: Literal["failed"] = "failed"
    error: str
    channel: Optional[str] = None


class Cancelled(_LogEntry):
    kind: Literal["cancelled"] = "cancelled"
    reason: str = "opted_out"


LogEntry = Annotated[
    Union[Sent, Deferred, Waiting, Branched, Completed, Failed, Cancelled],
    Field(discriminator="kind"),
]

_log_adapter = TypeAdapter(list[LogEntry])


def parse_logs(raw: Optional[list]) -> list:
    """Validate a stored log list into typed entries."""
    return _log_adapter.validate_python(raw or [])


def extended_logs(existing: Optional[list], *entries) -> list:
    """New log list with entries appended. The input list is left untouched."""
    return [*(existing or []), *(e.model_dump(mode="json") for e in entries)]


def append_log(enrollment, entry) -> None:
    """Append an entry to the enrollment's log.

    The list is reassigned rather than mutated so the ORM sees the change.
    """
    enrollment.execution_logs = extended_logs(enrollment.execution_logs, entry)


def last_log_entry(raw: Optional[list]) -> Optional[dict]:
    if not raw:
        return None
    return raw[-1]
