"""
Categorical errors raised by the scoring and game-progression core.

Callers branch on ``code`` (never on message text). The HTTP layer maps each
category to a status code via ``status_code``.
"""

from __future__ import annotations


class GameError(Exception):
    """Base class for every error surfaced to RPC callers."""

    code = "internal"
    status_code = 500

    def __init__(self, message: str = "", *, details: dict | None = None):
        self.message = message or self.code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"code": self.code, "detail": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidArgumentError(GameError):
    """Missing or malformed request fields, out-of-range values."""

    code = "invalid-argument"
    status_code = 400


class NotFoundError(GameError):
    """Game, player or question does not exist (often a stale client reference)."""

    code = "not-found"
    status_code = 404


class FailedPreconditionError(GameError):
    """Wrong game state, question-index mismatch, duplicate answer."""

    code = "failed-precondition"
    status_code = 409


class PermissionDeniedError(GameError):
    code = "permission-denied"
    status_code = 403


class InternalError(GameError):
    """Transient failure (transaction contention, aggregate write failure). Safe to retry."""

    code = "internal"
    status_code = 500


class TransactionConflictError(InternalError):
    """A transaction could not commit after exhausting its retry budget."""
