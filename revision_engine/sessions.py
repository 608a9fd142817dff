#!/usr/bin/env python3
"""
Revision Engine - Tracking Session Manager
==========================================
Version: module v1.0

Keeps one ChangeTracker per open document so that independent editors do
not share tracking state.

Features:
- Short unique session ids
- Per-session locks: edits, accepts and rejects on one document are serialized
- Idle sessions expire after a TTL; the least recently used are evicted at capacity
- Thread-safe session registry
"""

import uuid
import time
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Any, Iterator, Optional, List

from config_logging import get_config as get_app_config, get_logger, SessionNotFoundError
from .config import EngineConfig
from .models import Author
from .tracker import ChangeTracker

logger = get_logger('revision_engine.sessions')


@dataclass
class TrackingSession:
    """One document under change tracking."""
    session_id: str
    tracker: ChangeTracker
    created_at: float = field(default_factory=time.time)
    last_active: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def idle_seconds(self, now: float) -> float:
        return now - self.last_active

    def to_dict(self, include_document: bool = False) -> Dict[str, Any]:
        data = {
            'session_id': self.session_id,
            'created_at': self.created_at,
            'last_active': self.last_active,
            'metadata': self.metadata,
            'enabled': self.tracker.enabled,
            'author': self.tracker.author.to_dict(),
            'version': self.tracker.version,
            'pending_changes': len(self.tracker.current_changes())
        }
        if include_document:
            data['document'] = self.tracker.document
        return data


class SessionManager:
    """
    Thread-safe registry of tracking sessions.

    Usage:
        manager = SessionManager()
        session_id = manager.create_session("Draft text", author=Author('u1', 'Ana'))

        with manager.session(session_id) as tracker:
            tracker.apply_edit(EditOp.insert(5, " more"))
            patch = tracker.reject_all()
    """

    def __init__(self, max_sessions: int = 100, session_ttl: float = 3600,
                 config: Optional[EngineConfig] = None,
                 time_func: Callable[[], float] = time.time):
        """
        Initialize session manager.

        Args:
            max_sessions: Maximum sessions to keep in memory
            session_ttl: Idle seconds before a session expires
            config: Engine thresholds handed to every tracker
            time_func: Wall clock in seconds
        """
        self._sessions: Dict[str, TrackingSession] = {}
        self._lock = threading.RLock()
        self._max_sessions = max_sessions
        self._session_ttl = session_ttl
        self._config = config
        self._time = time_func

    def create_session(self, document: str = "", author: Optional[Author] = None,
                       enabled: bool = True, metadata: Optional[Dict[str, Any]] = None) -> str:
        """
        Open a tracking session and return its ID.

        Args:
            document: Initial document text
            author: Default author for edits in this session
            enabled: Whether edits are recorded from the start
            metadata: Optional host data (document name, owner, etc.)

        Returns:
            Unique session ID
        """
        tracker = ChangeTracker(document, author=author, enabled=enabled, config=self._config)
        with self._lock:
            self._cleanup_sessions()

            session_id = str(uuid.uuid4())[:8]
            while session_id in self._sessions:
                session_id = str(uuid.uuid4())[:8]
            now = self._time()
            self._sessions[session_id] = TrackingSession(
                session_id=session_id,
                tracker=tracker,
                created_at=now,
                last_active=now,
                metadata=metadata or {}
            )
        logger.info(f"Opened tracking session {session_id}", chars=len(document))
        return session_id

    def get_session(self, session_id: str) -> TrackingSession:
        """Get session by ID."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            return session

    @contextmanager
    def session(self, session_id: str) -> Iterator[ChangeTracker]:
        """Hold the session's lock and yield its tracker."""
        session = self.get_session(session_id)
        with session.lock:
            session.last_active = self._time()
            yield session.tracker

    def close_session(self, session_id: str) -> bool:
        """Discard a session. Returns False if it did not exist."""
        with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.info(f"Closed tracking session {session_id}")
        return removed is not None

    def list_sessions(self) -> List[Dict[str, Any]]:
        """Summaries of open sessions, most recently active first."""
        with self._lock:
            sessions = sorted(self._sessions.values(), key=lambda s: s.last_active, reverse=True)
            return [s.to_dict() for s in sessions]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def _cleanup_sessions(self):
        """Expire idle sessions, then evict the least recently used at capacity."""
        with self._lock:
            now = self._time()
            expired = [sid for sid, s in self._sessions.items()
                       if s.idle_seconds(now) > self._session_ttl]
            for sid in expired:
                del self._sessions[sid]
            if expired:
                logger.info(f"Expired {len(expired)} idle sessions")

            if len(self._sessions) >= self._max_sessions:
                by_age = sorted(self._sessions.items(), key=lambda item: item[1].last_active)
                while len(self._sessions) >= self._max_sessions and by_age:
                    sid, _ = by_age.pop(0)
                    del self._sessions[sid]
                    logger.warning(f"Evicted session {sid}: at capacity ({self._max_sessions})")


# Global session manager instance
_session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Get or create the global session manager instance."""
    global _session_manager
    if _session_manager is None:
        app_config = get_app_config()
        _session_manager = SessionManager(
            max_sessions=app_config.max_sessions,
            session_ttl=app_config.session_ttl
        )
    return _session_manager


def reset_session_manager():
    """Drop every session (for testing)."""
    global _session_manager
    _session_manager = None
