"""Bearer-token verification for callers of the memory engine."""

from __future__ import annotations

import hmac
from abc import ABC, abstractmethod


class AuthVerifier(ABC):
    """Maps a bearer token to a user id."""

    @abstractmethod
    async def verify(self, bearer_token: str) -> str | None:
        """Return the user id for ``bearer_token``, or None if it is not valid."""
        pass


class StaticTokenVerifier(AuthVerifier):
    """Fixed token -> user id table, for local use and tests."""

    def __init__(self, tokens: dict[str, str] | None = None):
        self._tokens = dict(tokens or {})

    def add_token(self, token: str, user_id: str) -> None:
        self._tokens[token] = user_id

    async def verify(self, bearer_token: str) -> str | None:
        token = bearer_token.removeprefix("Bearer ").strip()
        if not token:
            return None
        for known, user_id in self._tokens.items():
            if hmac.compare_digest(known, token):
                return user_id
        return None
