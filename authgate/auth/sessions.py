from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


@dataclass(frozen=True)
class PendingSession:
    uid: str
    method: str
    issued_at: datetime
    expires_at: datetime


class PendingSessionStore:
    """Short-lived, single-use tokens standing in for a completed first factor."""

    def __init__(self, ttl_seconds: int = 300) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._sessions: dict[str, PendingSession] = {}
        self._lock = threading.Lock()

    def mint(self, uid: str, method: str, now: datetime | None = None) -> str:
        moment = now or datetime.now(timezone.utc)
        token = secrets.token_urlsafe(32)
        entry = PendingSession(
            uid=uid,
            method=method,
            issued_at=moment,
            expires_at=moment + timedelta(seconds=self.ttl_seconds),
        )
        with self._lock:
            self._purge(moment)
            self._sessions[token] = entry
        return token

    def consume(self, token: str | None, now: datetime | None = None) -> PendingSession | None:
        if not token:
            return None
        moment = now or datetime.now(timezone.utc)
        with self._lock:
            entry = self._sessions.pop(token, None)
            self._purge(moment)
        if entry is None or entry.expires_at <= moment:
            return None
        return entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _purge(self, moment: datetime) -> None:
        expired = [token for token, entry in self._sessions.items() if entry.expires_at <= moment]
        for token in expired:
            del self._sessions[token]
