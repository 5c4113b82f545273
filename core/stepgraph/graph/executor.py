"""
Graph Executor - Runs one session of a compiled graph.

The executor:
1. Registers the session and builds the initial snapshot
2. Walks START -> entry -> ... -> END one node at a time
3. Merges each node's partial update through the channel reducers
4. Publishes a step update after every merge
5. Clears the session from the registry before its terminal event is published

Node failures are data: an exception raised inside a node becomes an
ErrorValue in the graph's error channel, and the graph's own conditional
edges decide where to go next. Only integrity errors (an outcome with no
target, an unmergeable update, a runaway cycle) abort the run.
"""

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from stepgraph.config import DEFAULT_MAX_STEPS
from stepgraph.errors import StepLimitExceededError
from stepgraph.graph.builder import CompiledGraph
from stepgraph.graph.channels import Snapshot
from stepgraph.graph.edge import END, START, ConditionalEdgeSpec
from stepgraph.graph.node import ErrorValue, NodeContext, NodeSpec, NodeUpdate
from stepgraph.observability import reset_trace_context, set_trace_context
from stepgraph.runtime.events import (
    Cancelled,
    Completed,
    EventSink,
    FatalError,
    NullEventSink,
    Started,
    StepUpdated,
    WorkflowEvent,
)
from stepgraph.runtime.progress import ProgressTracker
from stepgraph.runtime.session_registry import SessionRegistry


class ExecutionStatus(StrEnum):
    """How a run that did not raise came to an end."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class ExecutionResult:
    """Result of executing a graph for one session."""

    session_id: str
    status: ExecutionStatus
    snapshot: Snapshot
    path: list[str] = field(default_factory=list)  # Node IDs traversed
    steps_executed: int = 0
    error: Any = None  # Final value of the error channel

    @property
    def completed(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    @property
    def cancelled(self) -> bool:
        return self.status == ExecutionStatus.CANCELLED


@dataclass
class _Run:
    """Mutable per-run state, owned by exactly one drive() call."""

    session_id: str
    run_id: str
    snapshot: Snapshot
    current: str = START
    path: list[str] = field(default_factory=list)
    steps: int = 0


class GraphExecutor:
    """
    Executes compiled graphs, one session per execute() call.

    Example:
        executor = GraphExecutor(registry=SessionRegistry(), event_sink=bus)
        result = await executor.execute(graph, "session-1", {"topic": "solar"})
    """

    def __init__(
        self,
        registry: SessionRegistry,
        event_sink: EventSink | None = None,
        max_steps: int | None = None,
    ):
        """
        Initialize the executor.

        Args:
            registry: Where sessions are registered, flagged and cleared
            event_sink: Receives lifecycle and step events (default: dropped)
            max_steps: Node executions allowed per run before aborting;
                the graph's own max_steps wins when set
        """
        self.registry = registry
        self.event_sink = event_sink or NullEventSink()
        self.max_steps = max_steps or DEFAULT_MAX_STEPS
        self.logger = logging.getLogger(__name__)

    # === SESSION LIFECYCLE ===

    def initial_snapshot(
        self, graph: CompiledGraph, initial: Mapping[str, Any] | None = None
    ) -> Snapshot:
        """Channel defaults with the caller's initial values merged on top."""
        return graph.state_schema.merge(graph.state_schema.initial_state(), initial or {})

    def register(
        self,
        graph: CompiledGraph,
        session_id: str,
        initial: Mapping[str, Any] | None = None,
    ) -> tuple[str, Snapshot]:
        """
        Register the session without running it.

        Returns:
            (run_id, initial snapshot) to hand to drive()

        Raises:
            SessionAlreadyActiveError: the session id is already running; the
                existing run is left untouched
            InvalidUpdateError: ``initial`` names channels the schema lacks
        """
        snapshot = self.initial_snapshot(graph, initial)
        handle = self.registry.start(session_id, snapshot, graph_id=graph.id)
        return handle.run_id, snapshot

    async def execute(
        self,
        graph: CompiledGraph,
        session_id: str,
        initial: Mapping[str, Any] | None = None,
    ) -> ExecutionResult:
        """
        Run a graph to END or cancellation.

        Returns:
            ExecutionResult with the final snapshot and the path taken

        Raises:
            SessionAlreadyActiveError: before anything runs or is published
            ExecutionIntegrityError: after publishing ``fatal_error``
        """
        run_id, snapshot = self.register(graph, session_id, initial)
        return await self.drive(graph, session_id, run_id, snapshot)

    async def drive(
        self,
        graph: CompiledGraph,
        session_id: str,
        run_id: str,
        snapshot: Snapshot,
    ) -> ExecutionResult:
        """Run an already registered session. Always clears it on the way out."""
        run = _Run(session_id=session_id, run_id=run_id, snapshot=snapshot)
        max_steps = graph.max_steps or self.max_steps
        tracker = (
            ProgressTracker(steps=graph.progress_steps, step_channel=graph.step_channel)
            if graph.progress_steps
            else None
        )

        trace_token = set_trace_context(session_id=session_id, graph_id=graph.id, node_id=None)
        self.logger.info(f"🚀 Starting session {session_id} on graph '{graph.id}'")
        self.logger.info(f"   Entry node: {graph.entry_node}")

        try:
            self._publish(session_id, Started(graph_id=graph.id))
            run.current = graph.entry_node

            while True:
                if self.registry.is_cancelled(session_id):
                    self.logger.info(f"⏹ Cancel observed before '{run.current}', stopping")
                    self._finish(session_id, run_id, Cancelled(snapshot=run.snapshot))
                    return self._result(graph, run, ExecutionStatus.CANCELLED)

                if run.current == END:
                    self.logger.info(
                        f"✓ Session {session_id} reached END after {run.steps} steps"
                    )
                    self._finish(session_id, run_id, Completed(snapshot=run.snapshot))
                    return self._result(graph, run, ExecutionStatus.COMPLETED)

                if run.steps >= max_steps:
                    raise StepLimitExceededError(max_steps, run.current)

                node = graph.nodes[run.current]
                run.steps += 1
                run.path.append(node.id)
                set_trace_context(node_id=node.id)

                update = await self._run_node(node, run, graph)
                run.snapshot = graph.state_schema.merge(run.snapshot, update)
                self.registry.update_snapshot(session_id, run.snapshot, current_node=node.id)

                step, progress = None, None
                if tracker is not None:
                    step = tracker.current_step(run.snapshot, node.id)
                    progress = tracker.progress(run.snapshot, node.id)

                self._publish(
                    session_id,
                    StepUpdated(
                        snapshot=run.snapshot,
                        progress=progress,
                        node_id=node.id,
                        step=step,
                    ),
                )

                run.current = self._next_node(graph, node.id, run.snapshot)

        except asyncio.CancelledError:
            self.logger.warning(f"⏹ Session {session_id} task cancelled at '{run.current}'")
            self._finish(session_id, run_id, Cancelled(snapshot=run.snapshot))
            raise

        except Exception as e:
            self.logger.error(f"✗ Session {session_id} aborted at '{run.current}': {e}")
            self._finish(
                session_id,
                run_id,
                FatalError(message=str(e), step=run.current, error_type=type(e).__name__),
            )
            raise

        finally:
            self.registry.clear(session_id, run_id=run_id)
            reset_trace_context(trace_token)

    # === STEPS ===

    async def _run_node(self, node: NodeSpec, run: _Run, graph: CompiledGraph) -> NodeUpdate:
        """Invoke a node, turning any exception it raises into an error update."""
        ctx = NodeContext(
            session_id=run.session_id,
            node_id=node.id,
            graph_id=graph.id,
            step=run.steps,
            logger=logging.getLogger(f"stepgraph.node.{node.id}"),
            _is_cancelled=lambda: self.registry.is_cancelled(run.session_id),
        )

        self.logger.info(f"▶ Step {run.steps}: {node.id}")
        start = time.perf_counter()
        try:
            update = await node.invoke(run.snapshot, ctx)
        except Exception as exc:
            latency_ms = int((time.perf_counter() - start) * 1000)
            self.logger.warning(
                f"   ✗ Node '{node.id}' failed after {latency_ms}ms: {exc}",
                extra={"node_id": node.id, "latency_ms": latency_ms},
            )
            return self._error_update(graph, exc, node.id)

        latency_ms = int((time.perf_counter() - start) * 1000)
        if isinstance(update, BaseException):
            self.logger.warning(f"   ✗ Node '{node.id}' returned an error: {update}")
            return self._error_update(graph, update, node.id)

        keys = list(update) if isinstance(update, Mapping) else []
        self.logger.info(
            f"   ✓ {node.id} done in {latency_ms}ms, updated: {keys}",
            extra={"node_id": node.id, "latency_ms": latency_ms},
        )
        return update

    @staticmethod
    def _error_update(graph: CompiledGraph, exc: BaseException, node_id: str) -> dict[str, Any]:
        return {graph.error_channel: ErrorValue.from_exception(exc, origin_node=node_id)}

    def _next_node(self, graph: CompiledGraph, node_id: str, snapshot: Snapshot) -> str:
        """Follow the node's edge. Raises UnmappedOutcomeError for an unknown outcome."""
        edge = graph.get_outgoing_edge(node_id)
        if edge is None:
            self.logger.info(f"   → No outgoing edge from '{node_id}', ending")
            return END
        if isinstance(edge, ConditionalEdgeSpec):
            outcome, target = edge.resolve(snapshot)
            self.logger.info(f"   → {node_id} --[{outcome}]--> {target}")
            return target
        self.logger.info(f"   → {node_id} --> {edge.target}")
        return edge.target

    # === HELPERS ===

    def _publish(self, session_id: str, event: WorkflowEvent) -> None:
        """Fire-and-forget delivery; a failing sink never affects the run."""
        try:
            self.event_sink.publish(session_id, event)
        except Exception:
            self.logger.exception(f"Event sink failed to publish {event.type} for {session_id}")

    def _finish(self, session_id: str, run_id: str, event: WorkflowEvent) -> None:
        """Clear the session, then publish its terminal event."""
        self.registry.clear(session_id, run_id=run_id)
        self._publish(session_id, event)

    @staticmethod
    def _result(graph: CompiledGraph, run: _Run, status: ExecutionStatus) -> ExecutionResult:
        return ExecutionResult(
            session_id=run.session_id,
            status=status,
            snapshot=run.snapshot,
            path=list(run.path),
            steps_executed=run.steps,
            error=run.snapshot.get(graph.error_channel),
        )
