"""
Custom Exceptions

This module defines custom exceptions for the rate limiting subsystem and
the protected API around it.

Failure classes:
- ConfigurationError: programming error, never turned into a 429
- StoreUnavailableError: persistence failure, absorbed by the engine (fail open)
- RemoteLimiterUnreachableError: remote limiter failure, absorbed by the client fallback
- RateLimitExceededError: the one expected rejection, rendered as HTTP 429
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from app.core.rate_limit import RateLimitDecision


class RateLimiterException(Exception):
    """Base exception for the net worth API and its rate limiter."""
    pass


class ConfigurationError(RateLimiterException):
    """Raised when an action has no rate limit configuration."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"No rate limit configuration found for action: {action}")


class StoreUnavailableError(RateLimiterException):
    """Raised when the window store cannot be read or written."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(f"Window store failure: {message}")


class RemoteLimiterUnreachableError(RateLimiterException):
    """
    Raised when the remote limiter cannot answer.

    The message carries the words the health monitor classifies on
    (timeout, network, unauthorized, service unavailable).
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimitExceededError(RateLimiterException):
    """Raised by the HTTP guard when a caller is over quota."""

    def __init__(self, decision: "RateLimitDecision", action: str, identifier: str):
        self.decision = decision
        self.action = action
        self.identifier = identifier
        super().__init__(
            f"Rate limit exceeded for {action} ({identifier}), "
            f"retry after {decision.retry_after_seconds}s"
        )


class AuthenticationError(RateLimiterException):
    """Raised when a bearer token is missing or cannot be verified."""

    def __init__(self, reason: str = "Invalid authentication token"):
        self.reason = reason
        super().__init__(reason)


class DocumentNotFoundError(RateLimiterException):
    """Raised when an asset or debt does not exist."""

    def __init__(self, kind: str, document_id: str):
        self.kind = kind
        self.document_id = document_id
        super().__init__(f"{kind.capitalize()} '{document_id}' not found")


class ForbiddenError(RateLimiterException):
    """Raised when a user touches a document owned by someone else."""

    def __init__(self, kind: str, document_id: str):
        self.kind = kind
        self.document_id = document_id
        super().__init__(f"Not allowed to modify {kind} '{document_id}'")
