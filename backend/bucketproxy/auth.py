"""
Password login and session-token dependencies for the management API.
"""
from __future__ import annotations

import hmac
import random
import secrets
import threading
import time
from typing import Callable, Dict, Optional

from fastapi import HTTPException, Request

SESSION_COOKIE = "session_token"
SWEEP_PROBABILITY = 0.1


def verify_password(candidate: str, expected: str) -> bool:
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


class SessionStore:
    """
    In-memory table of session tokens with a fixed expiry.

    Expired tokens are rejected at lookup time. Creating a session also runs a
    sweep of expired entries with probability ``sweep_probability``; the sweep
    only reclaims memory.
    """

    def __init__(
        self,
        ttl_seconds: float,
        sweep_probability: float = SWEEP_PROBABILITY,
        clock: Callable[[], float] = time.time,
        rng: Callable[[], float] = random.random,
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_probability = sweep_probability
        self._clock = clock
        self._rng = rng
        self._lock = threading.Lock()
        self._sessions: Dict[str, float] = {}

    def create(self) -> str:
        token = secrets.token_hex(32)
        expiry = self._clock() + self.ttl_seconds
        with self._lock:
            self._sessions[token] = expiry
        if self._rng() < self.sweep_probability:
            self.sweep()
        return token

    def validate(self, token: Optional[str]) -> bool:
        if not token:
            return False
        now = self._clock()
        with self._lock:
            expiry = self._sessions.get(token)
            if expiry is None:
                return False
            if now >= expiry:
                del self._sessions[token]
                return False
        return True

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [token for token, expiry in self._sessions.items() if now >= expiry]
            for token in expired:
                del self._sessions[token]
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


def extract_token(request: Request) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    header = request.headers.get("authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return None


def optional_session(request: Request) -> bool:
    sessions: SessionStore = request.app.state.sessions
    return sessions.validate(extract_token(request))


def require_session(request: Request) -> None:
    if not optional_session(request):
        raise HTTPException(status_code=401, detail="Unauthorized")
