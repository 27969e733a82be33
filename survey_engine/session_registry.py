"""
Per-session locking.

Each session has a single writer: turns for the same session id are
serialised, turns for different sessions run independently.

Usage:
    registry = SessionRegistry()
    with registry.session(session_id):
        state = orchestrator.ingest_answer(state, question_id, answer)
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Hands out one lock per session id"""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, session_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    @contextmanager
    def session(self, session_id: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold the session's lock for the duration of the block.

        Args:
            session_id: Session identifier
            timeout: Seconds to wait for the lock (None = wait forever)

        Raises:
            TimeoutError: If the lock could not be acquired in time
        """
        lock = self.lock_for(session_id)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise TimeoutError(f"Session {session_id} is busy")
        try:
            yield
        finally:
            lock.release()

    def release(self, session_id: str) -> bool:
        """
        Forget a finished session's lock.

        A lock that is currently held is kept, so a turn in progress and a
        later caller still share it.

        Returns:
            bool: True if the lock was dropped (or never existed)
        """
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                return True
            if not lock.acquire(blocking=False):
                logger.warning(f"Session {session_id} is busy, lock kept")
                return False
            try:
                del self._locks[session_id]
            finally:
                lock.release()
        logger.debug(f"Released lock for session {session_id}")
        return True

    def __contains__(self, session_id: str) -> bool:
        with self._guard:
            return session_id in self._locks

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
