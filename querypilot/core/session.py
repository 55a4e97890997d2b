"""
In-memory query sessions and the store that owns them
"""

import itertools
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Union

from ..models import SessionOptions, HistoryEntry, HistoryAction
from ..utils.exceptions import SessionNotFound
from ..utils.logging import get_logger

logger = get_logger(__name__)

MAX_HISTORY = 50
DEFAULT_MAX_AGE = timedelta(hours=24)

Clock = Callable[[], datetime]
OptionsLike = Union[SessionOptions, Dict, None]


class QuerySession:
    """
    One conversation's mutable state.

    ``history`` and ``detailed_history`` are kept positionally aligned and
    capped at the most recent ``MAX_HISTORY`` entries. All mutation happens
    under the session lock; accessors hand out copies.
    """

    def __init__(self, session_id: str, options: SessionOptions, clock: Clock = datetime.now):
        self.session_id = session_id
        self._options = options
        self._clock = clock
        self.created_at = clock()
        self._history: List[str] = []
        self._detailed_history: List[HistoryEntry] = []
        self._lock = threading.RLock()

    @property
    def options(self) -> SessionOptions:
        return self._options

    @property
    def history(self) -> List[str]:
        return self.get_history()

    @property
    def detailed_history(self) -> List[HistoryEntry]:
        return self.get_detailed_history()

    def add_to_history(self, query: str, confidence: float, action: HistoryAction,
                       reason: Optional[str] = None) -> HistoryEntry:
        """Append a query and its audit record, dropping the oldest beyond the cap"""
        entry = HistoryEntry(
            query=query,
            timestamp=self._clock(),
            confidence=confidence,
            action=action,
            reason=reason
        )
        with self._lock:
            self._history.append(query)
            self._detailed_history.append(entry)
            if len(self._history) > MAX_HISTORY:
                self._history = self._history[-MAX_HISTORY:]
                self._detailed_history = self._detailed_history[-MAX_HISTORY:]

        logger.debug(f"Added query to session {self.session_id} history: {action.value}")
        return entry

    def get_history(self) -> List[str]:
        with self._lock:
            return list(self._history)

    def get_detailed_history(self) -> List[HistoryEntry]:
        with self._lock:
            return list(self._detailed_history)

    def update_options(self, partial: Dict) -> SessionOptions:
        with self._lock:
            self._options = self._options.merged(partial)
            return self._options

    @property
    def last_activity(self) -> datetime:
        """Timestamp of the newest history entry, or creation time"""
        with self._lock:
            if self._detailed_history:
                return self._detailed_history[-1].timestamp
            return self.created_at

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    def __repr__(self) -> str:
        return f"QuerySession(id={self.session_id!r}, entries={len(self)})"


class SessionManager:
    """
    Owns every active QuerySession.

    Constructed once per process and passed to its consumers; the session map
    is guarded by a lock so concurrent callers can share one store.
    """

    def __init__(self, default_options: Optional[SessionOptions] = None, clock: Clock = datetime.now):
        self._sessions: Dict[str, QuerySession] = {}
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._default_options = default_options or SessionOptions()
        self._clock = clock

    def create(self, options: OptionsLike = None) -> QuerySession:
        """Create and register a session; supplied options override the defaults"""
        if isinstance(options, SessionOptions):
            partial = options.model_dump(exclude_unset=True)
        else:
            partial = dict(options or {})
        merged = self._default_options.merged(partial)

        with self._lock:
            session_id = f"session_{next(self._counter)}_{int(time.time() * 1000)}"
            session = QuerySession(session_id, merged, clock=self._clock)
            self._sessions[session_id] = session

        logger.info(f"Created new query session: {session_id}")
        return session

    def get(self, session_id: str) -> Optional[QuerySession]:
        """Look a session up; None when it does not exist"""
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            logger.debug(f"Session not found: {session_id}")
        return session

    def require(self, session_id: str) -> QuerySession:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def update_options(self, session_id: str, partial: Dict) -> SessionOptions:
        session = self.require(session_id)
        options = session.update_options(partial)
        logger.info(f"Updated session {session_id} options: {sorted(partial)}")
        return options

    def end(self, session_id: str) -> bool:
        """Remove a session. Ending an unknown session is a no-op."""
        with self._lock:
            session = self._sessions.pop(session_id, None)

        if session is None:
            logger.warning(f"Attempted to end non-existent session: {session_id}")
            return False

        logger.info(f"Ended session: {session_id}")
        return True

    def evict_idle(self, max_age: Union[timedelta, float] = DEFAULT_MAX_AGE,
                   now: Optional[datetime] = None) -> int:
        """
        Remove sessions whose last activity is older than ``max_age``.

        Args:
            max_age: timedelta or seconds
            now: reference time, defaults to the store clock

        Returns:
            Number of sessions removed
        """
        if not isinstance(max_age, timedelta):
            max_age = timedelta(seconds=max_age)
        now = now or self._clock()

        with self._lock:
            expired = [
                sid for sid, session in self._sessions.items()
                if now - session.last_activity > max_age
            ]
            for sid in expired:
                del self._sessions[sid]

        for sid in expired:
            logger.info(f"Cleaned up idle session: {sid}")
        if expired:
            logger.info(f"Cleaned up {len(expired)} idle sessions")
        return len(expired)

    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)
