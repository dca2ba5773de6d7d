"""Password recovery: username -> security answer -> new password.

Progress is tracked server-side in ``RecoverySessionStore`` under an opaque
recovery token handed out at the username step. Every answer check reserves
an attempt before the hash comparison runs, so concurrent guesses cannot
exceed the attempt budget. Once the budget is spent the session is FAILED and
stays failed until it expires; the client has to start over from login.
"""
from __future__ import annotations

import logging
import secrets
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from . import settings as _settings
from .account_store import AccountStore
from .errors import AccountError, RecoveryError, ValidationError
from .password_hasher import consume_dummy_verify, hash_secret, verify_secret
from .validation import validate_new_password

_log = logging.getLogger(__name__)

TERMINATED_MESSAGE = "答案连续输入错误{attempts}次，已强制退出，请重新开始"


class RecoveryState(str, Enum):
    AWAITING_ANSWER = "awaiting_answer"
    AWAITING_NEW_PASSWORD = "awaiting_new_password"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class RecoverySession:
    token: str
    username: str
    expires_at: float
    state: RecoveryState = RecoveryState.AWAITING_ANSWER
    attempts: int = 0
    created_at: float = field(default_factory=time.monotonic)


class RecoverySessionStore:
    """Process-local recovery sessions with TTL expiry and a size cap."""

    def __init__(
        self,
        *,
        ttl_sec: Optional[int] = None,
        max_sessions: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_sec = int(ttl_sec if ttl_sec is not None else _settings.recovery_session_ttl_sec())
        self.max_sessions = int(max_sessions if max_sessions is not None else _settings.recovery_max_sessions())
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: "OrderedDict[str, RecoverySession]" = OrderedDict()

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def open(self, username: str) -> RecoverySession:
        now = self._clock()
        session = RecoverySession(
            token=secrets.token_urlsafe(24),
            username=username,
            expires_at=now + self.ttl_sec,
            created_at=now,
        )
        with self._lock:
            self._sweep(now)
            self._sessions[session.token] = session
            while len(self._sessions) > self.max_sessions:
                self._sessions.popitem(last=False)
        return session

    def get_locked(self, token: str) -> Optional[RecoverySession]:
        """Look up a live session; the caller must hold ``lock``."""
        session = self._sessions.get(str(token or ""))
        if session is None:
            return None
        if session.expires_at <= self._clock():
            self._sessions.pop(session.token, None)
            return None
        return session

    def get(self, token: str) -> Optional[RecoverySession]:
        with self._lock:
            return self.get_locked(token)

    def discard_locked(self, token: str) -> None:
        self._sessions.pop(str(token or ""), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _sweep(self, now: float) -> None:
        stale = [token for token, item in self._sessions.items() if item.expires_at <= now]
        for token in stale:
            self._sessions.pop(token, None)


class PasswordRecoveryService:
    def __init__(
        self,
        store: AccountStore,
        sessions: Optional[RecoverySessionStore] = None,
        *,
        max_attempts: Optional[int] = None,
        decoy_question: Optional[str] = None,
    ):
        self.store = store
        self.sessions = sessions if sessions is not None else RecoverySessionStore()
        self.max_attempts = int(max_attempts if max_attempts is not None else _settings.recovery_max_attempts())
        self.decoy_question = decoy_question or _settings.recovery_decoy_question()

    def start(self, username: str) -> str:
        """Open a recovery session; identical outcome whether or not the user exists."""
        return self.sessions.open(str(username or "").strip()).token

    def security_question(self, username: str, token: Optional[str] = None) -> str:
        name = str(username or "").strip()
        if token:
            session = self.sessions.get(token)
            if session is None or session.username != name:
                return self.decoy_question
        try:
            question = self.store.get_security_question(name)
        except AccountError:
            _log.warning("security question lookup failed; answering with decoy", exc_info=True)
            return self.decoy_question
        return question or self.decoy_question

    def verify_answer(self, *, token: str, username: str, answer: str) -> None:
        name = str(username or "").strip()
        with self.sessions.lock:
            session = self.sessions.get_locked(token)
            if session is None:
                raise RecoveryError()
            if session.state == RecoveryState.FAILED or session.attempts >= self.max_attempts:
                raise self._terminated()
            if session.state != RecoveryState.AWAITING_ANSWER:
                raise RecoveryError()
            session.attempts += 1
            attempt = session.attempts

        matched = False
        if session.username == name:
            stored = self.store.get_security_answer_hash(name)
            if stored:
                matched = verify_secret(str(answer or "").strip(), stored)
            else:
                consume_dummy_verify(answer)
        else:
            consume_dummy_verify(answer)

        with self.sessions.lock:
            passed = matched and session.state == RecoveryState.AWAITING_ANSWER
            if passed:
                session.attempts = 0
                session.state = RecoveryState.AWAITING_NEW_PASSWORD
        if passed:
            self._audit(name, "success", attempt=attempt)
            return

        with self.sessions.lock:
            if attempt >= self.max_attempts and session.state == RecoveryState.AWAITING_ANSWER:
                session.state = RecoveryState.FAILED
            terminated = session.state == RecoveryState.FAILED
            remaining = max(0, self.max_attempts - session.attempts)

        self._audit(name, "terminated" if terminated else "mismatch", attempt=attempt)
        if terminated:
            raise self._terminated()
        raise RecoveryError(attempts_remaining=remaining)

    def reset_password(self, *, token: str, username: str, new_password: str) -> None:
        message = validate_new_password(new_password)
        if message:
            raise ValidationError({"newPassword": message})

        name = str(username or "").strip()
        with self.sessions.lock:
            session = self.sessions.get_locked(token)
            if (
                session is None
                or session.state != RecoveryState.AWAITING_NEW_PASSWORD
                or session.username != name
            ):
                raise RecoveryError()
            session.state = RecoveryState.COMPLETE

        try:
            updated = self.store.update_password(username=name, password_hash=hash_secret(new_password))
        except AccountError:
            with self.sessions.lock:
                session.state = RecoveryState.AWAITING_NEW_PASSWORD
            raise

        with self.sessions.lock:
            self.sessions.discard_locked(session.token)
        if not updated:
            raise RecoveryError()

    def _terminated(self) -> RecoveryError:
        return RecoveryError(
            TERMINATED_MESSAGE.format(attempts=self.max_attempts),
            attempts_remaining=0,
            terminated=True,
        )

    def _audit(self, username: str, result: str, *, attempt: int) -> None:
        try:
            self.store.record_event(
                username=username,
                action="recovery_answer",
                result=result,
                detail={"attempt": attempt, "max_attempts": self.max_attempts},
            )
        except AccountError:
            _log.warning("failed to record recovery audit event", exc_info=True)


__all__ = [
    "PasswordRecoveryService",
    "RecoverySession",
    "RecoverySessionStore",
    "RecoveryState",
]
