"""Email/password identity provider backed by the record store."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .errors import AuthenticationError, ValidationError
from .storage import RecordStore, generate_key, join_path, now_ms

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6

SessionListener = Callable[[Optional["Session"]], None]


@dataclass(frozen=True)
class Session:
    uid: str
    email: str
    signed_in_at: int

    def to_dict(self) -> dict:
        return {"uid": self.uid, "email": self.email, "signed_in_at": self.signed_in_at}


class IdentityProvider:
    """Accounts live under ``users/{uid}``.

    ``sign_in``, ``restore`` and ``sign_out`` drive one process-local current
    session (the CLI). Request handlers serving many users call
    ``authenticate`` and ``lookup``, which never change it.
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store
        self._session: Optional[Session] = None
        self._listeners: List[SessionListener] = []

    @property
    def current_session(self) -> Optional[Session]:
        return self._session

    def _find_uid(self, email: str) -> Optional[str]:
        users = self._store.get("users") or {}
        for uid, account in users.items():
            if isinstance(account, dict) and account.get("email", "").lower() == email.lower():
                return uid
        return None

    def register(self, email: str, password: str) -> str:
        email = email.strip()
        if not EMAIL_PATTERN.match(email):
            raise ValidationError(f"Invalid email address: {email}", field="email")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must have at least {MIN_PASSWORD_LENGTH} characters", field="password"
            )
        if self._find_uid(email) is not None:
            raise ValidationError(f"An account for {email} already exists", field="email")
        uid = generate_key()
        self._store.set(
            join_path("users", uid),
            {"email": email, "passwordHash": generate_password_hash(password), "createdAt": now_ms()},
        )
        logger.info("Registered account %s", email)
        return uid

    def authenticate(self, email: str, password: str) -> Session:
        """Check credentials without touching the provider's current session."""
        uid = self._find_uid(email.strip())
        account = self._store.get(join_path("users", uid)) if uid else None
        if not account or not check_password_hash(account.get("passwordHash", ""), password):
            logger.warning("Failed sign-in for %s", email)
            raise AuthenticationError("Invalid email or password")
        return Session(uid=uid, email=account["email"], signed_in_at=now_ms())

    def lookup(self, uid: str) -> Session:
        account = self._store.get(join_path("users", uid))
        if not account:
            raise AuthenticationError("Session refers to an unknown account")
        return Session(uid=uid, email=account["email"], signed_in_at=now_ms())

    def sign_in(self, email: str, password: str) -> Session:
        session = self.authenticate(email, password)
        self._set_session(session)
        logger.info("Signed in %s", email)
        return session

    def restore(self, uid: str) -> Session:
        """Make the account behind an already authenticated ``uid`` current."""
        session = self.lookup(uid)
        self._set_session(session)
        return session

    def sign_out(self) -> None:
        if self._session is not None:
            logger.info("Signed out %s", self._session.email)
        self._set_session(None)

    def on_session_change(self, callback: SessionListener) -> Callable[[], None]:
        """Register ``callback``; it is invoked now and on every change."""
        self._listeners.append(callback)
        callback(self._session)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _set_session(self, session: Optional[Session]) -> None:
        self._session = session
        for listener in list(self._listeners):
            listener(session)
