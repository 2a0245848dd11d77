"""
Token Verifier

Turns a bearer token into a user id. Identity verification itself belongs
to the identity provider; the API only depends on this interface.
"""

from abc import ABC, abstractmethod
from typing import Mapping, Optional

from app.core.exceptions import AuthenticationError


class TokenVerifier(ABC):
    """Abstract base class for bearer token verification."""

    @abstractmethod
    async def verify(self, token: str) -> str:
        """
        Verify a bearer token.

        Returns:
            The user id the token was issued to

        Raises:
            AuthenticationError: If the token is invalid or expired
        """


class StaticTokenVerifier(TokenVerifier):
    """
    Verifier backed by a fixed token -> user id map.

    Used for local development (AUTH_TOKENS setting) and tests.
    """

    def __init__(self, tokens: Optional[Mapping[str, str]] = None):
        self.tokens = dict(tokens or {})

    async def verify(self, token: str) -> str:
        user_id = self.tokens.get(token)
        if not user_id:
            raise AuthenticationError("Invalid authentication token")
        return user_id
