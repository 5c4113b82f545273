"""
Node Protocol - The unit of work in a graph.

A node is a plain function keyed by id:

    async def research(snapshot):
        findings = await search(snapshot["topic"])
        return {"research": findings, "current_step": "research"}

It receives the current Snapshot and returns a partial update (a mapping of
channel name to value) or None. Nodes that want per-run details declare a
second parameter and receive a NodeContext:

    async def review(snapshot, context):
        context.logger.info("Reviewing %d slides", len(snapshot["slides"]))
        ...

A node that raises is not a crash. The executor records the failure as an
ErrorValue in the graph's error channel and keeps routing.
"""

import inspect
import logging
import traceback
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stepgraph.graph.channels import Snapshot

NodeUpdate = Mapping[str, Any] | None
NodeFunction = Callable[..., Awaitable[NodeUpdate] | NodeUpdate]


class ErrorValue(BaseModel):
    """A node failure, stored as ordinary channel data."""

    message: str
    origin_node: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    error_type: str = "Exception"
    details: str | None = Field(default=None, description="Formatted traceback, if captured")

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_exception(cls, exc: BaseException, origin_node: str) -> "ErrorValue":
        return cls(
            message=str(exc) or type(exc).__name__,
            origin_node=origin_node,
            error_type=type(exc).__name__,
            details="".join(traceback.format_exception(exc)),
        )


@dataclass
class NodeContext:
    """Per-invocation details handed to nodes that ask for them."""

    session_id: str
    node_id: str
    graph_id: str
    step: int
    logger: logging.Logger
    _is_cancelled: Callable[[], bool] = field(default=lambda: False, repr=False)

    @property
    def cancel_requested(self) -> bool:
        """True once a cancel has been requested for this session.

        Cancellation never interrupts a running node; long-running nodes may
        check this to wrap up early.
        """
        return self._is_cancelled()


def _wants_context(fn: Callable[..., Any]) -> bool:
    try:
        params = list(inspect.signature(fn).parameters.values())
    except (TypeError, ValueError):
        return False
    if any(p.kind == inspect.Parameter.VAR_POSITIONAL for p in params):
        return True
    positional = [
        p
        for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    if len(positional) >= 2 and positional[1].name == "context":
        return True
    required = [p for p in positional if p.default is inspect.Parameter.empty]
    return len(required) >= 2


@dataclass(frozen=True)
class NodeSpec:
    """A registered node: id plus the function that runs it."""

    id: str
    fn: NodeFunction
    description: str = ""
    accepts_context: bool = False

    @classmethod
    def create(cls, node_id: str, fn: NodeFunction, description: str = "") -> "NodeSpec":
        if not callable(fn):
            raise TypeError(f"Node '{node_id}' function must be callable, got {type(fn).__name__}")
        return cls(
            id=node_id,
            fn=fn,
            description=description or (inspect.getdoc(fn) or "").split("\n", 1)[0],
            accepts_context=_wants_context(fn),
        )

    async def invoke(self, snapshot: Snapshot, context: NodeContext) -> NodeUpdate:
        """Call the node function, awaiting it if it is a coroutine."""
        if self.accepts_context:
            result = self.fn(snapshot, context)
        else:
            result = self.fn(snapshot)
        if inspect.isawaitable(result):
            result = await result
        return result
