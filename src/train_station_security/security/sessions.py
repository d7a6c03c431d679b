"""
Server-side session registry.

Sessions expire on absolute age or on inactivity and can be bound to the
client IP address and, optionally, its user agent.
"""

import secrets
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from train_station_security.core.logging import get_logger, get_security_logger

logger = get_logger(__name__)
security_logger = get_security_logger(__name__)


class SessionFailureReason(str, Enum):
    """Why a session failed validation."""

    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    IDLE_TIMEOUT = "idle_timeout"
    IP_MISMATCH = "ip_mismatch"
    USER_AGENT_MISMATCH = "user_agent_mismatch"


@dataclass
class SessionRecord:
    """An authenticated session."""

    session_id: str
    user_id: str
    created_at: float
    last_activity_at: float
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class SessionValidation:
    """Result of validating a session."""

    valid: bool
    user_id: Optional[str] = None
    reason: Optional[SessionFailureReason] = None


class SessionRegistry:
    """In-memory session store with age, idle and binding checks."""

    def __init__(
        self,
        max_age_seconds: float = 24 * 60 * 60,
        max_idle_seconds: float = 2 * 60 * 60,
        enforce_ip_binding: bool = True,
        enforce_user_agent_binding: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.max_age_seconds = max_age_seconds
        self.max_idle_seconds = max_idle_seconds
        self.enforce_ip_binding = enforce_ip_binding
        self.enforce_user_agent_binding = enforce_user_agent_binding
        self.clock = clock
        self._sessions: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create_session(
        self,
        user_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> str:
        """Register a new session and return its identifier."""
        session_id = secrets.token_hex(32)
        now = self.clock()

        with self._lock:
            self._sessions[session_id] = SessionRecord(
                session_id=session_id,
                user_id=user_id,
                created_at=now,
                last_activity_at=now,
                ip_address=ip_address,
                user_agent=user_agent,
            )

        logger.info("Session created", user_id=user_id, ip_address=ip_address)
        return session_id

    def _check(
        self,
        record: SessionRecord,
        now: float,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> Optional[SessionFailureReason]:
        if now - record.created_at > self.max_age_seconds:
            return SessionFailureReason.EXPIRED
        if now - record.last_activity_at > self.max_idle_seconds:
            return SessionFailureReason.IDLE_TIMEOUT
        if self.enforce_ip_binding and record.ip_address != ip_address:
            return SessionFailureReason.IP_MISMATCH
        if self.enforce_user_agent_binding and record.user_agent != user_agent:
            return SessionFailureReason.USER_AGENT_MISMATCH
        return None

    def validate_session(
        self,
        session_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionValidation:
        """
        Validate a session for the calling client.

        A failed check destroys the session; a successful one refreshes its
        last activity time.
        """
        now = self.clock()

        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                reason = SessionFailureReason.NOT_FOUND
            else:
                reason = self._check(record, now, ip_address, user_agent)
                if reason is None:
                    record.last_activity_at = now
                    return SessionValidation(valid=True, user_id=record.user_id)
                del self._sessions[session_id]

        security_logger.session_rejected(
            session_id=session_id,
            reason=reason.value,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return SessionValidation(valid=False, reason=reason)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            return self._sessions.get(session_id)

    def destroy_session(self, session_id: str) -> bool:
        """Remove a session; return whether it existed."""
        with self._lock:
            removed = self._sessions.pop(session_id, None)

        if removed is not None:
            logger.info("Session destroyed", user_id=removed.user_id)
        return removed is not None

    def cleanup(self) -> int:
        """Remove sessions past their age or idle limit."""
        now = self.clock()
        with self._lock:
            stale = [
                session_id
                for session_id, record in self._sessions.items()
                if now - record.created_at > self.max_age_seconds
                or now - record.last_activity_at > self.max_idle_seconds
            ]
            for session_id in stale:
                del self._sessions[session_id]

        if stale:
            logger.info("Cleaned up sessions", count=len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
