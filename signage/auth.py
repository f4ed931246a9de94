"""Session authentication for Signage Sync.

A single shared secret (the API key) is exchanged for an opaque session
token.  Tokens carry 256 bits of randomness, are not bound to any user, and
expire after 24 hours of inactivity: every successful validation slides the
window forward.  An hourly background sweep drops idle tokens.

Failed logins are counted per client address; once a client has used up
its failures for the window, further attempts are refused with
:class:`LoginLockedOut` until the oldest failure ages out.

Mutating endpoints depend on :func:`require_session`; read endpoints never do.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable

from fastapi import Header, HTTPException, Request, status

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Token"
SESSION_IDLE_SECONDS = 24 * 60 * 60
SWEEP_INTERVAL_SECONDS = 60 * 60
LOGIN_MAX_FAILURES = 10
LOGIN_WINDOW_SECONDS = 15 * 60


class AuthError(Exception):
    """Raised when the shared secret is wrong or a token is not valid."""


class LoginLockedOut(AuthError):
    """Raised when a client has too many recent failed logins."""

    def __init__(self, retry_after: float) -> None:
        super().__init__("Too many login attempts, please try again later")
        self.retry_after = retry_after


@dataclass
class Session:
    token: str
    created_at: float
    last_used_at: float


class LoginRateLimiter:
    """Per-client failed-login tracker over a sliding window."""

    def __init__(
        self,
        max_failures: int = LOGIN_MAX_FAILURES,
        window_seconds: float = LOGIN_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_failures = max(1, int(max_failures))
        self.window_seconds = window_seconds
        self._clock = clock
        self._failures: dict[str, list[float]] = {}

    def _recent(self, key: str, now: float) -> list[float]:
        cutoff = now - self.window_seconds
        recent = [t for t in self._failures.get(key, []) if t > cutoff]
        if recent:
            self._failures[key] = recent
        else:
            self._failures.pop(key, None)
        return recent

    def retry_after(self, key: str) -> float:
        """Seconds until *key* may try again; 0 if it is not locked out."""
        now = self._clock()
        recent = self._recent(key, now)
        if len(recent) < self.max_failures:
            return 0.0
        return max(0.0, recent[-self.max_failures] + self.window_seconds - now)

    def record_failure(self, key: str) -> None:
        now = self._clock()
        self._recent(key, now)
        self._failures.setdefault(key, []).append(now)

    def reset(self, key: str) -> None:
        self._failures.pop(key, None)

    def prune(self) -> None:
        now = self._clock()
        for key in list(self._failures):
            self._recent(key, now)

    def __len__(self) -> int:
        return len(self._failures)


class SessionManager:
    """In-memory session table with a sliding idle expiry."""

    def __init__(
        self,
        secret: str,
        idle_seconds: float = SESSION_IDLE_SECONDS,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
        limiter: LoginRateLimiter | None = None,
    ) -> None:
        self._secret = secret
        self.idle_seconds = idle_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self.limiter = limiter or LoginRateLimiter(clock=clock)
        self._sessions: dict[str, Session] = {}
        self._task: asyncio.Task | None = None

    # ── Public API ────────────────────────────────────────────────

    def login(self, secret: str, client: str | None = None) -> str:
        """Exchange the shared secret for a new session token.

        *client* identifies the caller (usually its IP address) for failed
        login accounting.  Raises :class:`LoginLockedOut` without checking
        the secret while that client is locked out.
        """
        key = client or "unknown"
        wait = self.limiter.retry_after(key)
        if wait > 0:
            logger.warning("Login refused for %s: too many failed attempts", key)
            raise LoginLockedOut(wait)
        if not isinstance(secret, str) or not hmac.compare_digest(
            secret.encode(), self._secret.encode()
        ):
            self.limiter.record_failure(key)
            logger.warning("Failed login from %s", key)
            raise AuthError("Invalid credentials")
        self.limiter.reset(key)
        token = secrets.token_hex(32)
        now = self._clock()
        self._sessions[token] = Session(token=token, created_at=now, last_used_at=now)
        logger.info("New session created: %s...", token[:8])
        return token

    def validate(self, token: str | None) -> bool:
        """True if *token* is live; a successful check refreshes its window."""
        if not token:
            return False
        session = self._sessions.get(token)
        if session is None:
            return False
        now = self._clock()
        if now - session.last_used_at > self.idle_seconds:
            self._sessions.pop(token, None)
            logger.info("Session expired: %s...", token[:8])
            return False
        session.last_used_at = now
        return True

    def logout(self, token: str | None) -> None:
        """Forget *token*.  Unknown tokens are ignored."""
        if token and self._sessions.pop(token, None) is not None:
            logger.info("Session logged out: %s...", token[:8])

    def sweep(self) -> int:
        """Drop every session idle beyond the window; returns how many."""
        now = self._clock()
        expired = [
            t for t, s in self._sessions.items()
            if now - s.last_used_at > self.idle_seconds
        ]
        for token in expired:
            del self._sessions[token]
        self.limiter.prune()
        if expired:
            logger.info("Swept %d expired session(s)", len(expired))
        return len(expired)

    def get(self, token: str) -> Session | None:
        return self._sessions.get(token)

    def __len__(self) -> int:
        return len(self._sessions)

    # ── Background sweep ──────────────────────────────────────────

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._sweep_loop())
        logger.debug("Session sweep started (every %.0fs)", self.sweep_interval)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Session sweep failed")


# ── FastAPI dependency ────────────────────────────────────────────

async def require_session(
    request: Request,
    x_session_token: str | None = Header(default=None, alias=SESSION_HEADER),
) -> str:
    """Dependency that ensures the caller holds a live session token."""
    sessions: SessionManager = request.app.state.service.sessions
    if not sessions.validate(x_session_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return x_session_token
