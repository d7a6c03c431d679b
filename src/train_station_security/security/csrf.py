"""
CSRF token management.

One token is active per session key. Issuing a new token replaces the old
one, a token validates at most once, and expired or used records are swept
by ``cleanup``.
"""

import hmac
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from train_station_security.core.logging import get_logger, get_security_logger

logger = get_logger(__name__)
security_logger = get_security_logger(__name__)

TOKEN_BYTES = 32


@dataclass
class CSRFTokenRecord:
    """Issued CSRF token bound to a session key."""

    session_id: str
    token: str
    issued_at: float
    expires_at: float
    used: bool = False

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class CSRFTokenManager:
    """Issue and validate one-time CSRF tokens."""

    def __init__(self, ttl_seconds: float = 3600, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._tokens: Dict[str, CSRFTokenRecord] = {}
        self._lock = threading.Lock()

    def generate_token(self, session_id: str) -> str:
        """Issue a fresh token for ``session_id``, replacing any prior one."""
        token = secrets.token_hex(TOKEN_BYTES)
        now = self.clock()

        with self._lock:
            self._tokens[session_id] = CSRFTokenRecord(
                session_id=session_id,
                token=token,
                issued_at=now,
                expires_at=now + self.ttl_seconds,
            )

        logger.debug("CSRF token issued", session_id=session_id)
        return token

    def validate_token(self, session_id: str, token: Optional[str]) -> bool:
        """Check ``token`` against the record for ``session_id``.

        A successful check consumes the token. A mismatch leaves the record
        in place so a forged request cannot burn the legitimate token.
        """
        with self._lock:
            record = self._tokens.get(session_id)

            if record is None:
                reason = "not_found"
            elif record.used:
                reason = "already_used"
            elif record.is_expired(self.clock()):
                del self._tokens[session_id]
                reason = "expired"
            elif not isinstance(token, str) or not hmac.compare_digest(
                record.token.encode(), token.encode()
            ):
                reason = "mismatch"
            else:
                record.used = True
                reason = None

        if reason is not None:
            security_logger.csrf_failure(session_id=session_id, reason=reason)
            return False

        return True

    def revoke(self, session_id: str) -> None:
        """Drop the token for ``session_id`` if there is one."""
        with self._lock:
            self._tokens.pop(session_id, None)

    def get_record(self, session_id: str) -> Optional[CSRFTokenRecord]:
        with self._lock:
            return self._tokens.get(session_id)

    def cleanup(self) -> int:
        """Remove expired and used tokens; return how many were removed."""
        now = self.clock()
        with self._lock:
            stale = [
                session_id
                for session_id, record in self._tokens.items()
                if record.used or record.is_expired(now)
            ]
            for session_id in stale:
                del self._tokens[session_id]

        if stale:
            logger.info("Cleaned up CSRF tokens", count=len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
