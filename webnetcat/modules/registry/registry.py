import logging
import threading
from typing import Dict, List, Optional


logger = logging.getLogger("webnetcat.registry")


class SessionRegistry:
    def __init__(self, max_sessions: int = 50):
        """
        Initialize session registry.

        Args:
            max_sessions: Maximum number of concurrently registered sessions

        The check-then-insert in try_acquire() runs under a lock, so the bound
        holds whether sessions run on one event loop or on several threads.
        """
        if max_sessions < 1:
            raise ValueError(f"max_sessions must be positive, got {max_sessions}")
        self.max_sessions = max_sessions
        self._lock = threading.Lock()
        self._sessions: Dict[str, dict] = {}
        self._admitted_total = 0
        self._rejected_total = 0

    def try_acquire(self, session_id: str, info: Optional[dict] = None) -> bool:
        """
        Register a session if capacity allows.

        Args:
            session_id: Unique session identifier
            info: Optional descriptive data (target host/port, ...)

        Returns:
            True if a slot was taken, False if the registry is full
        """
        with self._lock:
            if session_id in self._sessions:
                raise ValueError(f"Session {session_id} is already registered")
            if len(self._sessions) >= self.max_sessions:
                self._rejected_total += 1
                logger.warning(
                    f"Session registry full ({len(self._sessions)}/{self.max_sessions}), "
                    f"rejecting {session_id}"
                )
                return False
            self._sessions[session_id] = dict(info or {})
            self._admitted_total += 1
            return True

    def release(self, session_id: str) -> bool:
        """
        Release a session's slot.

        Returns:
            True if the slot was released, False if it was not registered
            (already released or never acquired)
        """
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def record_rejection(self) -> None:
        """Count a session refused before reaching the registry (admission denial)."""
        with self._lock:
            self._rejected_total += 1

    def is_registered(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    @property
    def admitted_total(self) -> int:
        return self._admitted_total

    @property
    def rejected_total(self) -> int:
        return self._rejected_total

    def snapshot(self) -> List[dict]:
        """
        Get all registered sessions.

        Used for monitoring purposes.
        """
        with self._lock:
            return [
                {"session_id": session_id, **info}
                for session_id, info in self._sessions.items()
            ]
