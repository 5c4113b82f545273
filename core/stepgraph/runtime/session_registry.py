"""
Session Registry - One in-flight execution per session id.

Tracks, for every running session, its cancellation flag and the latest
snapshot the executor produced. The registry is the only state shared
between sessions, so every operation takes a short lock and none of them
ever await while holding it. Calls are safe from any thread or task.

Lifecycle of an entry:
    start()  -> registered, cancelled=False
    cancel() -> cancelled=True (no-op when unknown or repeated)
    clear()  -> removed; the executor calls this exactly once on every
                exit path, so no entry outlives its run
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from stepgraph.errors import SessionAlreadyActiveError
from stepgraph.graph.channels import Snapshot

logger = logging.getLogger(__name__)


@dataclass
class SessionHandle:
    """Bookkeeping for one running session."""

    session_id: str
    latest_snapshot: Snapshot
    graph_id: str = ""
    cancelled: bool = False
    current_node: str | None = None
    steps_executed: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class SessionRegistry:
    """Thread-safe map of session id -> SessionHandle."""

    def __init__(self):
        self._sessions: dict[str, SessionHandle] = {}
        self._lock = threading.Lock()

    def start(
        self, session_id: str, initial_snapshot: Snapshot, graph_id: str = ""
    ) -> SessionHandle:
        """
        Register a new session.

        Raises:
            SessionAlreadyActiveError: if ``session_id`` is already registered
        """
        with self._lock:
            if session_id in self._sessions:
                raise SessionAlreadyActiveError(session_id)
            handle = SessionHandle(
                session_id=session_id,
                latest_snapshot=initial_snapshot,
                graph_id=graph_id,
            )
            self._sessions[session_id] = handle
        logger.debug(f"Registered session {session_id}")
        return replace(handle)

    def cancel(self, session_id: str) -> bool:
        """
        Request cooperative cancellation.

        Returns:
            True if a live session was found (whether or not it was already
            flagged); False for unknown or finished sessions. Never raises.
        """
        with self._lock:
            handle = self._sessions.get(session_id)
            if handle is None:
                return False
            handle.cancelled = True
        logger.info(f"Cancellation requested for session {session_id}")
        return True

    def is_cancelled(self, session_id: str) -> bool:
        with self._lock:
            handle = self._sessions.get(session_id)
            return handle is not None and handle.cancelled

    def update_snapshot(
        self,
        session_id: str,
        snapshot: Snapshot,
        current_node: str | None = None,
    ) -> None:
        """Publish the executor's latest snapshot for external queries."""
        with self._lock:
            handle = self._sessions.get(session_id)
            if handle is None:
                return
            handle.latest_snapshot = snapshot
            handle.current_node = current_node
            handle.steps_executed += 1

    def get_snapshot(self, session_id: str) -> Snapshot | None:
        """Latest snapshot of a running session, or None if not registered."""
        with self._lock:
            handle = self._sessions.get(session_id)
            return handle.latest_snapshot if handle is not None else None

    def get_handle(self, session_id: str) -> SessionHandle | None:
        """A copy of the session's bookkeeping, or None."""
        with self._lock:
            handle = self._sessions.get(session_id)
            return replace(handle) if handle is not None else None

    def clear(self, session_id: str, run_id: str | None = None) -> bool:
        """
        Remove a session.

        Args:
            session_id: Session to remove
            run_id: Only remove the entry if it belongs to this run, so a
                late clear can never evict a newer run of the same id

        Returns:
            True if an entry was removed
        """
        with self._lock:
            handle = self._sessions.get(session_id)
            if handle is None or (run_id is not None and handle.run_id != run_id):
                return False
            del self._sessions[session_id]
        logger.debug(f"Cleared session {session_id}")
        return True

    def active_session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
