# Overview: Error taxonomy for the sale transaction engine.

"""
Every failure carries a stable machine-readable ``kind`` plus a human message.

Routes serialize these with ``to_dict()`` and ``status_code``; services raise
them only before mutating anything, except ``PersistenceFailure`` which is
raised after the partial work has been rolled back.
"""

from __future__ import annotations


class PosError(Exception):
    """Base class for business and infrastructure errors raised by services."""

    kind = "Error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": str(self),
            "details": self.details,
        }


class InvalidInput(PosError):
    """Caller error; nothing was changed."""

    kind = "InvalidInput"
    status_code = 400


class InsufficientStock(PosError):
    kind = "InsufficientStock"
    status_code = 400


class NotFound(PosError):
    kind = "NotFound"
    status_code = 404


class AlreadyCancelled(PosError):
    kind = "AlreadyCancelled"
    status_code = 409


class AlreadyReleased(PosError):
    """A stock reservation was released before; releasing again would drift stock."""

    kind = "AlreadyReleased"
    status_code = 409


class Unauthorized(PosError):
    kind = "Unauthorized"
    status_code = 403


class PersistenceFailure(PosError):
    """Storage failed after side effects began; those effects were rolled back."""

    kind = "PersistenceFailure"
    status_code = 500
