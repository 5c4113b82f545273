"""Workflow lifecycle events and the sink contract they are published through.

Defines a closed union of frozen dataclasses, one per lifecycle moment of a
session. Each variant carries only the fields it needs. ``to_dict()`` gives
the wire form observers receive (``id``, ``type``, ``timestamp``, ``data``).
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel


class EventType(StrEnum):
    """Wire names for each event variant."""

    STARTED = "workflow.start"
    STEP_UPDATED = "state.update"
    COMPLETED = "workflow.complete"
    CANCELLED = "workflow.cancelled"
    FATAL_ERROR = "workflow.error"


TERMINAL_EVENT_TYPES = frozenset({"completed", "cancelled", "fatal_error"})


def jsonable(value: Any) -> Any:
    """Convert channel values into JSON-safe structures."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Mapping):
        return {str(k): jsonable(v) for k, v in value.items()}
    if isinstance(value, list | tuple | set | frozenset):
        return [jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if value is None or isinstance(value, str | int | float | bool):
        return value
    return str(value)


def _event_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class _EventBase:
    """Envelope fields shared by every variant."""

    def _data(self) -> dict[str, Any]:
        return {}

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the observer wire form."""
        return {
            "id": self.id,
            "type": EventType[self.type.upper()].value,
            "timestamp": self.timestamp.isoformat(),
            "data": jsonable(self._data()),
        }


@dataclass(frozen=True)
class Started(_EventBase):
    """A session began executing."""

    type: Literal["started"] = "started"
    graph_id: str = ""
    id: str = field(default_factory=_event_id)
    timestamp: datetime = field(default_factory=_now)

    def _data(self) -> dict[str, Any]:
        return {"graph_id": self.graph_id, "status": "starting"}


@dataclass(frozen=True)
class StepUpdated(_EventBase):
    """A node finished and its output was merged."""

    type: Literal["step_updated"] = "step_updated"
    snapshot: Mapping[str, Any] = field(default_factory=dict)
    progress: float | None = None
    node_id: str = ""
    step: str | None = None
    id: str = field(default_factory=_event_id)
    timestamp: datetime = field(default_factory=_now)

    def _data(self) -> dict[str, Any]:
        return {
            "node": self.node_id,
            "workflow_step": self.step,
            "progress": self.progress,
            "state": dict(self.snapshot),
        }


@dataclass(frozen=True)
class Completed(_EventBase):
    """The run reached END."""

    type: Literal["completed"] = "completed"
    snapshot: Mapping[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_event_id)
    timestamp: datetime = field(default_factory=_now)

    def _data(self) -> dict[str, Any]:
        return {"success": True, "state": dict(self.snapshot)}


@dataclass(frozen=True)
class Cancelled(_EventBase):
    """The run stopped because a cancel was requested."""

    type: Literal["cancelled"] = "cancelled"
    snapshot: Mapping[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_event_id)
    timestamp: datetime = field(default_factory=_now)

    def _data(self) -> dict[str, Any]:
        return {"state": dict(self.snapshot)}


@dataclass(frozen=True)
class FatalError(_EventBase):
    """The run was aborted by an integrity error."""

    type: Literal["fatal_error"] = "fatal_error"
    message: str = ""
    step: str | None = None
    error_type: str = ""
    id: str = field(default_factory=_event_id)
    timestamp: datetime = field(default_factory=_now)

    def _data(self) -> dict[str, Any]:
        return {"error": self.message, "step": self.step, "error_type": self.error_type}


WorkflowEvent = Started | StepUpdated | Completed | Cancelled | FatalError


@runtime_checkable
class EventSink(Protocol):
    """Anything the executor can report to.

    Delivery is fire-and-forget: publish() must not block on observers, and
    the executor ignores (logs) any exception it raises.
    """

    def publish(self, session_id: str, event: WorkflowEvent) -> None: ...


class NullEventSink:
    """Sink that drops everything."""

    def publish(self, session_id: str, event: WorkflowEvent) -> None:
        return None
