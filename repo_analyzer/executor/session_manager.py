"""Session lifecycle for pipeline runs.

A session holds the run-scoped bookkeeping (goal, stage context, stage
summaries, tool outcomes) of one pipeline execution. It is created at
pipeline entry and ended in a finally block, so it never outlives the run.

Bounds:
- At most max_sessions live sessions; creating one more evicts the oldest
- Sessions idle longer than the timeout are dropped by cleanup_expired_sessions(),
  which also runs on every create_session()

The table is guarded by a threading.Lock since API handlers and the
pipeline may touch it from different threads.
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from repo_analyzer import config as settings
from repo_analyzer.executor.schemas import (
    SessionMessage,
    SessionState,
    SessionStats,
    SessionSummary,
    ToolResultRecord,
)

logger = logging.getLogger(__name__)


class SessionManager:
    def __init__(
        self,
        max_sessions: int = settings.MAX_SESSIONS,
        timeout_seconds: int = settings.SESSION_TIMEOUT_SECONDS,
    ):
        self.max_sessions = max_sessions
        self.timeout = timedelta(seconds=timeout_seconds)
        self._sessions: dict[str, SessionState] = {}
        self._lock = threading.Lock()

    def create_session(self, analysis_goal: str, repository_path: str) -> SessionState:
        """Create and register a new session.

        Returns:
            The new SessionState
        """
        self.cleanup_expired_sessions()
        session = SessionState(
            session_id=f"session-{uuid.uuid4().hex[:12]}",
            repository_path=str(repository_path),
            analysis_goal=analysis_goal,
        )
        with self._lock:
            while len(self._sessions) >= self.max_sessions:
                oldest = min(self._sessions.values(), key=lambda s: s.created_at)
                del self._sessions[oldest.session_id]
                logger.warning(f"Session limit {self.max_sessions} reached, evicted {oldest.session_id}")
            self._sessions[session.session_id] = session
        logger.info(f"Created session {session.session_id} ({analysis_goal}) for {repository_path}")
        return session

    def get_session(self, session_id: str) -> Optional[SessionState]:
        """Get a live session and refresh its activity timestamp."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if self._is_expired(session):
                del self._sessions[session_id]
                return None
            session.updated_at = datetime.utcnow()
            return session

    def update_session_context(self, session_id: str, updates: dict[str, Any]) -> bool:
        session = self.get_session(session_id)
        if session is None:
            return False
        with self._lock:
            session.current_context.update(updates)
        return True

    def add_conversation_message(self, session_id: str, role: str, content: str) -> bool:
        session = self.get_session(session_id)
        if session is None:
            return False
        with self._lock:
            session.conversation_history.append(SessionMessage(role=role, content=content))
        return True

    def record_tool_result(self, session_id: str, tool_name: str, success: bool, summary: str = "") -> bool:
        session = self.get_session(session_id)
        if session is None:
            return False
        with self._lock:
            session.tool_results.append(
                ToolResultRecord(tool_name=tool_name, success=success, summary=summary[:500])
            )
        return True

    def get_session_summary(self, session_id: str) -> Optional[SessionSummary]:
        session = self.get_session(session_id)
        if session is None:
            return None
        with self._lock:
            tool_count = len(session.tool_results)
            successes = sum(1 for r in session.tool_results if r.success)
            return SessionSummary(
                session_id=session.session_id,
                analysis_goal=session.analysis_goal,
                duration_seconds=(datetime.utcnow() - session.created_at).total_seconds(),
                message_count=len(session.conversation_history),
                tool_call_count=tool_count,
                tool_success_rate=(successes / tool_count) if tool_count else 0.0,
                current_stage=session.current_context.get("stage"),
            )

    def end_session(self, session_id: str) -> bool:
        """Remove a session. Returns False if it was already gone."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            logger.debug(f"end_session: {session_id} not found")
            return False
        logger.info(f"Ended session {session_id}")
        return True

    def cleanup_expired_sessions(self) -> int:
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if self._is_expired(s)]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired sessions")
        return len(expired)

    def get_all_sessions(self) -> list[SessionState]:
        with self._lock:
            return list(self._sessions.values())

    def active_session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get_stats(self) -> SessionStats:
        with self._lock:
            oldest = min((s.created_at for s in self._sessions.values()), default=None)
            return SessionStats(
                active_sessions=len(self._sessions),
                max_sessions=self.max_sessions,
                oldest_session_age_seconds=(
                    (datetime.utcnow() - oldest).total_seconds() if oldest else None
                ),
            )

    def _is_expired(self, session: SessionState) -> bool:
        return datetime.utcnow() - session.updated_at > self.timeout
