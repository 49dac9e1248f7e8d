"""Keyring-backed session storage.

Holds the backend session token between CLI invocations and fans out
session invalidation (any backend 401/403) to registered listeners so
every component sees a logout at the same time.
"""

from __future__ import annotations

import logging
from typing import Callable

import keyring
from keyring.errors import PasswordDeleteError

from sdrive.config import KEY_NAME, SERVICE_NAME, lookup_auth_token

logger = logging.getLogger(__name__)


class SessionStore:
    """Session token store with logout-on-invalidation.

    A token supplied through ``SDRIVE_TOKEN`` cannot be deleted, so logout
    also marks this store as signed out until the next :meth:`login`.

    Usage::

        session = SessionStore()
        session.login(token)
        session.add_invalidation_listener(lambda: print("logged out"))
        session.invalidate()   # token removed, listeners notified
    """

    def __init__(self, service_name: str = SERVICE_NAME) -> None:
        self._service_name = service_name
        self._listeners: list[Callable[[], None]] = []
        self._signed_out = False

    @property
    def token(self) -> str | None:
        """Current token, read on every access (keyring, then env var)."""
        if self._signed_out:
            return None
        return lookup_auth_token(self._service_name)

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    def login(self, token: str) -> None:
        """Persist *token* as the active session."""
        if not token or not token.strip():
            raise ValueError("Session token cannot be empty")
        keyring.set_password(self._service_name, KEY_NAME, token.strip())
        self._signed_out = False
        logger.info("Session token stored (service: %s)", self._service_name)

    def logout(self) -> None:
        """Remove the stored token. A missing token is not an error."""
        self._signed_out = True
        try:
            keyring.delete_password(self._service_name, KEY_NAME)
        except PasswordDeleteError:
            logger.debug("No stored session token to remove")
        else:
            logger.info("Session token removed (service: %s)", self._service_name)

    def add_invalidation_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    def invalidate(self) -> None:
        """Treat the session as invalid: log out and notify listeners."""
        logger.warning("Backend rejected the session token, logging out")
        self.logout()
        for listener in list(self._listeners):
            listener()
