"""
Workflow Runtime - The session control surface.

Wires a SessionRegistry, an event sink and a GraphExecutor together and
exposes the calls an application makes:
- start(): run a session to END or cancellation, return the final snapshot
- run(): the same, returning the full ExecutionResult
- spawn(): the same, in a background asyncio task
- cancel() / get_snapshot() / active_sessions(): act on running sessions

Example:
    runtime = WorkflowRuntime()
    sub = runtime.event_bus.subscribe(session_id="s-1", until_terminal=True)

    task = runtime.spawn(graph, {"user_input": request}, "s-1")
    async for _, event in sub:
        print(event.to_dict())

    snapshot = (await task).snapshot
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from stepgraph.config import RuntimeConfig
from stepgraph.graph.builder import CompiledGraph
from stepgraph.graph.channels import Snapshot
from stepgraph.graph.executor import ExecutionResult, GraphExecutor
from stepgraph.runtime.event_bus import EventBus
from stepgraph.runtime.events import Cancelled, EventSink
from stepgraph.runtime.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class WorkflowRuntime:
    """
    Runs compiled graphs for many concurrent sessions.

    Each session is one asyncio task; sessions share nothing but the
    registry and the event sink. At most one run per session id is in
    flight at a time.
    """

    def __init__(
        self,
        registry: SessionRegistry | None = None,
        event_sink: EventSink | None = None,
        config: RuntimeConfig | None = None,
    ):
        """
        Initialize the runtime.

        Args:
            registry: Session registry (default: a fresh one)
            event_sink: Where events go (default: an EventBus sized from config)
            config: Runtime settings (default: read from the config file)
        """
        self.config = config or RuntimeConfig()
        self.registry = registry or SessionRegistry()
        self.event_sink = event_sink or EventBus(
            max_history=self.config.event_history_size,
            max_queue_size=self.config.subscriber_queue_size,
        )
        self._executor = GraphExecutor(
            registry=self.registry,
            event_sink=self.event_sink,
            max_steps=self.config.max_steps,
        )
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def event_bus(self) -> EventBus | None:
        """The sink as an EventBus, when it is one."""
        return self.event_sink if isinstance(self.event_sink, EventBus) else None

    # === SESSION CONTROL ===

    async def start(
        self,
        graph: CompiledGraph,
        initial_snapshot: Mapping[str, Any] | None,
        session_id: str,
    ) -> Snapshot:
        """
        Run a session and return its final snapshot.

        Resolves when the run reaches END or observes a cancel.

        Raises:
            SessionAlreadyActiveError: ``session_id`` is already running
            ExecutionIntegrityError: the run was aborted (``fatal_error``
                has already been published)
        """
        result = await self.run(graph, initial_snapshot, session_id)
        return result.snapshot

    async def run(
        self,
        graph: CompiledGraph,
        initial_snapshot: Mapping[str, Any] | None,
        session_id: str,
    ) -> ExecutionResult:
        """Like start(), but returns the full ExecutionResult."""
        return await self._executor.execute(graph, session_id, initial_snapshot)

    def spawn(
        self,
        graph: CompiledGraph,
        initial_snapshot: Mapping[str, Any] | None,
        session_id: str,
    ) -> asyncio.Task:
        """
        Run a session in a background task.

        The session is registered before this returns, so a duplicate id
        raises here and an immediate cancel() is always observed.

        Returns:
            Task resolving to the ExecutionResult
        """
        run_id, snapshot = self._executor.register(graph, session_id, initial_snapshot)

        coro = self._executor.drive(graph, session_id, run_id, snapshot)
        try:
            task = asyncio.create_task(coro, name=f"stepgraph:{session_id}")
        except RuntimeError:
            coro.close()
            self.registry.clear(session_id, run_id=run_id)
            raise
        self._tasks[session_id] = task
        task.add_done_callback(
            lambda t: self._on_task_done(t, session_id, run_id, snapshot)
        )

        logger.debug(f"Spawned session {session_id} on graph '{graph.id}'")
        return task

    def cancel(self, session_id: str) -> None:
        """
        Request cooperative cancellation of a session.

        The run stops at its next step boundary and publishes ``cancelled``.
        Unknown or finished sessions are ignored.
        """
        if not self.registry.cancel(session_id):
            logger.debug(f"Cancel ignored, session {session_id} is not running")

    async def abort(self, session_id: str) -> bool:
        """
        Cancel a spawned session's task outright, without waiting for a step
        boundary.

        Returns:
            True if a running task was cancelled
        """
        task = self._tasks.get(session_id)
        if task is None or task.done():
            return False
        self.registry.cancel(session_id)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return True

    # === QUERIES ===

    def get_snapshot(self, session_id: str) -> Snapshot | None:
        """Latest snapshot of a running session; None once it has finished."""
        return self.registry.get_snapshot(session_id)

    def active_sessions(self) -> list[str]:
        return self.registry.active_session_ids()

    def get_stats(self) -> dict:
        """Runtime statistics."""
        stats: dict[str, Any] = {
            "active_sessions": self.registry.active_count(),
            "background_tasks": len(self._tasks),
            "max_steps": self.config.max_steps,
        }
        if self.event_bus is not None:
            stats["events"] = self.event_bus.get_stats()
        return stats

    # === HELPERS ===

    def _on_task_done(
        self, task: asyncio.Task, session_id: str, run_id: str, snapshot: Snapshot
    ) -> None:
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]

        # A task cancelled before drive() ever ran has published nothing and
        # cleared nothing; the entry is still ours.
        if self.registry.clear(session_id, run_id=run_id):
            logger.info(f"⏹ Session {session_id} cancelled before its first step")
            try:
                self.event_sink.publish(session_id, Cancelled(snapshot=snapshot))
            except Exception:
                logger.exception(f"Event sink failed to publish cancelled for {session_id}")
            return

        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug(f"Session {session_id} task ended with {type(exc).__name__}: {exc}")
