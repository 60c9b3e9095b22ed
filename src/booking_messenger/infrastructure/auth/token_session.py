from __future__ import annotations

import logging
from typing import Any, Callable

import jwt

from booking_messenger.application.dto.session import Session
from booking_messenger.application.exceptions import ValidationError
from booking_messenger.application.ports.session import SessionListener
from booking_messenger.config import Settings, settings

logger = logging.getLogger(__name__)


class TokenSessionProvider:
    """Session derived from the login token's JWT claims.

    Claims are verified when a shared secret is configured; otherwise they
    are only read, the API being the party that enforces them.
    """

    def __init__(self, cfg: Settings = settings) -> None:
        self._secret = cfg.JWT_SECRET
        self._algorithm = cfg.JWT_ALGORITHM
        self._session: Session | None = None
        self._listeners: list[SessionListener] = []

    @property
    def current(self) -> Session | None:
        return self._session

    @property
    def token(self) -> str | None:
        return self._session.token if self._session else None

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def login(self, token: str, user: dict[str, Any] | None = None) -> Session:
        claims = self._decode(token)
        user = user or {}
        user_id = user.get("id", claims.get("user_id", claims.get("sub")))
        if user_id is None:
            raise ValidationError("Token carries no user id")
        name = " ".join(
            str(part) for part in (user.get("first_name"), user.get("last_name")) if part
        )
        session = Session(
            user_id=str(user_id),
            token=token,
            name=name or str(claims.get("name") or "You"),
            avatar_url=user.get("avatar_url"),
        )
        self._session = session
        logger.info("Session started for user %s", session.user_id)
        self._notify(session)
        return session

    def logout(self) -> None:
        if self._session is None:
            return
        logger.info("Session ended for user %s", self._session.user_id)
        self._session = None
        self._notify(None)

    def _decode(self, token: str) -> dict[str, Any]:
        try:
            if self._secret:
                return jwt.decode(token, self._secret, algorithms=[self._algorithm])
            return jwt.decode(
                token,
                options={"verify_signature": False, "verify_exp": True},
                algorithms=[self._algorithm],
            )
        except jwt.PyJWTError as exc:
            raise ValidationError(f"Invalid session token: {exc}") from exc

    def _notify(self, session: Session | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception:
                logger.exception("Session listener failed")
