"""Exception hierarchy shared by the store, the aggregation engine and the UIs."""
from __future__ import annotations

from typing import Optional


class ClubError(Exception):
    """Base class for every error raised by hoopclub."""


class ValidationError(ClubError, ValueError):
    """A record or an input is malformed, or breaks an entity invariant."""

    def __init__(self, message: str, *, field: Optional[str] = None, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field
        self.key = key


class NotFoundError(ClubError, ValueError):
    """A referenced parent entity (branch, group, student, record) is absent."""


class ExternalCollaboratorError(ClubError, RuntimeError):
    """Failure reported by the record store, the identity provider or the blob store."""


class AuthenticationError(ExternalCollaboratorError):
    """Invalid credentials or missing session."""
