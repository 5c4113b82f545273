"""
stepgraph - Run stateful step graphs for many concurrent sessions.

A graph is a set of named channels, node functions that read a snapshot
and return partial updates, and edges (plain or decided at run time)
between them. The runtime executes one graph per session, streams
lifecycle events, and supports cooperative cancellation.
"""

from stepgraph.config import RuntimeConfig
from stepgraph.errors import (
    ConflictingEdgeError,
    DanglingOutcomeError,
    DuplicateChannelError,
    DuplicateNodeError,
    ExecutionIntegrityError,
    GraphDefinitionError,
    InvalidUpdateError,
    SessionAlreadyActiveError,
    StepGraphError,
    StepLimitExceededError,
    UnknownChannelError,
    UnknownNodeError,
    UnknownStepError,
    UnmappedOutcomeError,
    UnreachableNodeError,
    UntrackedStepError,
)
from stepgraph.graph import (
    CLEAR,
    END,
    START,
    ChannelSchema,
    CompiledGraph,
    ErrorValue,
    ExecutionResult,
    ExecutionStatus,
    GraphBuilder,
    NodeContext,
    Snapshot,
)
from stepgraph.runtime.event_bus import EventBus
from stepgraph.runtime.events import WorkflowEvent
from stepgraph.runtime.progress import DEFAULT_WORKFLOW_STEPS, calculate_progress
from stepgraph.runtime.session_registry import SessionRegistry
from stepgraph.runtime.workflow_runtime import WorkflowRuntime

__all__ = [
    "RuntimeConfig",
    # Graph
    "CLEAR",
    "ChannelSchema",
    "Snapshot",
    "GraphBuilder",
    "CompiledGraph",
    "NodeContext",
    "ErrorValue",
    "START",
    "END",
    # Runtime
    "WorkflowRuntime",
    "ExecutionResult",
    "ExecutionStatus",
    "SessionRegistry",
    "EventBus",
    "WorkflowEvent",
    "DEFAULT_WORKFLOW_STEPS",
    "calculate_progress",
    # Errors
    "StepGraphError",
    "GraphDefinitionError",
    "DuplicateChannelError",
    "UnknownChannelError",
    "DuplicateNodeError",
    "UnknownNodeError",
    "UnreachableNodeError",
    "UntrackedStepError",
    "DanglingOutcomeError",
    "ConflictingEdgeError",
    "ExecutionIntegrityError",
    "UnmappedOutcomeError",
    "SessionAlreadyActiveError",
    "InvalidUpdateError",
    "StepLimitExceededError",
    "UnknownStepError",
]
