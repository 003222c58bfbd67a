"""Session handling delegated to an identity provider.

The console never checks credentials itself. It asks the provider for the
present session and subscribes to session transitions (sign-in, sign-out,
token refresh), which the provider pushes to every listener.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Iterable, Optional
from uuid import uuid4

from bakery_console.errors import AuthenticationError

logger = logging.getLogger(__name__)


class SessionEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


@dataclass(frozen=True)
class SessionContext:
    user_id: str
    email: Optional[str]
    provider: str
    access_token: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "provider": self.provider,
            "access_token": self.access_token,
            "expires_at": self.expires_at.isoformat(),
        }


SessionListener = Callable[[SessionEvent, Optional[SessionContext]], None]


class IdentityProvider(ABC):
    providers: tuple[str, ...] = ()

    def __init__(self) -> None:
        self._listeners: list[SessionListener] = []

    def on_session_change(self, callback: SessionListener) -> Callable[[], None]:
        """Register ``callback`` for transitions of the current session; returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, event: SessionEvent, session: Optional[SessionContext]) -> None:
        for listener in list(self._listeners):
            listener(event, session)

    @abstractmethod
    def get_current_session(self) -> Optional[SessionContext]: ...

    @abstractmethod
    def lookup(self, access_token: str) -> Optional[SessionContext]: ...

    @abstractmethod
    def sign_in(self, provider: str, email: str, user_id: Optional[str] = None) -> SessionContext: ...

    @abstractmethod
    def sign_out(self, access_token: Optional[str] = None) -> None: ...

    @abstractmethod
    def refresh(self, access_token: str) -> SessionContext: ...


class InMemoryIdentityProvider(IdentityProvider):
    """Issues opaque bearer tokens for a fixed set of federated provider names.

    Stands in for the hosted identity service in development and tests.
    """

    def __init__(self, providers: Iterable[str] = ("google", "github"), ttl_seconds: int = 3600) -> None:
        super().__init__()
        self.providers = tuple(providers)
        self.ttl = timedelta(seconds=ttl_seconds)
        self._sessions: dict[str, SessionContext] = {}
        self._current: Optional[SessionContext] = None

    def _issue(self) -> tuple[str, datetime]:
        return uuid4().hex, datetime.now(timezone.utc) + self.ttl

    def get_current_session(self) -> Optional[SessionContext]:
        if self._current is not None and self._current.is_expired():
            return None
        return self._current

    def lookup(self, access_token: str) -> Optional[SessionContext]:
        session = self._sessions.get(access_token)
        if session is None or session.is_expired():
            return None
        return session

    def sign_in(self, provider: str, email: str, user_id: Optional[str] = None) -> SessionContext:
        if provider not in self.providers:
            raise AuthenticationError(f"identity provider '{provider}' is not enabled")
        if not email:
            raise AuthenticationError("email is required to sign in")
        token, expires_at = self._issue()
        session = SessionContext(
            user_id=user_id or str(uuid4()),
            email=email,
            provider=provider,
            access_token=token,
            expires_at=expires_at,
        )
        self._sessions[token] = session
        self._current = session
        logger.info("signed in %s via %s", email, provider)
        self._emit(SessionEvent.SIGNED_IN, session)
        return session

    def sign_out(self, access_token: Optional[str] = None) -> None:
        if access_token is None:
            access_token = self._current.access_token if self._current else None
        session = self._sessions.pop(access_token, None) if access_token else None
        if session is None:
            return
        logger.info("signed out %s", session.email)
        if self._current is not None and self._current.access_token == access_token:
            self._current = None
            self._emit(SessionEvent.SIGNED_OUT, None)

    def refresh(self, access_token: str) -> SessionContext:
        session = self.lookup(access_token)
        if session is None:
            raise AuthenticationError("session expired or unknown")
        token, expires_at = self._issue()
        refreshed = replace(session, access_token=token, expires_at=expires_at)
        del self._sessions[access_token]
        self._sessions[token] = refreshed
        if self._current is not None and self._current.access_token == access_token:
            self._current = refreshed
            self._emit(SessionEvent.TOKEN_REFRESHED, refreshed)
        return refreshed


class SessionGate:
    """Tracks the provider's present session for one console instance."""

    def __init__(self, provider: IdentityProvider) -> None:
        self.provider = provider
        self.session = provider.get_current_session()
        self._unsubscribe = provider.on_session_change(self._on_change)

    def _on_change(self, event: SessionEvent, session: Optional[SessionContext]) -> None:
        self.session = None if event is SessionEvent.SIGNED_OUT else session

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None and not self.session.is_expired()

    def require(self) -> SessionContext:
        if not self.is_authenticated:
            raise AuthenticationError("not signed in")
        return self.session

    def close(self) -> None:
        self._unsubscribe()
