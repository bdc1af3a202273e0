"""Custom exception hierarchy for agentcoord.

All application-specific exceptions inherit from CoordError,
which carries an error code for tool error mapping plus a context dict
naming the entity, its id, the attempted operation and current status.
"""

from __future__ import annotations

from typing import Any


class CoordError(Exception):
    """Base exception for all coordination errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: str = "INTERNAL_ERROR",
        **context: Any,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.code,
            "message": str(self),
            "retryable": self.retryable,
            **self.context,
        }


class NotFoundError(CoordError):
    """Referenced task / mission / plan / question / loop state does not exist."""

    def __init__(self, message: str, *, code: str = "NOT_FOUND", **context: Any) -> None:
        super().__init__(message, code=code, **context)


class RecordValidationError(CoordError):
    """Input rejected before any mutation (duplicate id, bad enum, missing field)."""

    def __init__(
        self, message: str, *, code: str = "VALIDATION_ERROR", **context: Any
    ) -> None:
        super().__init__(message, code=code, **context)


class InvalidTransitionError(CoordError):
    """Operation not allowed from the record's current status."""

    def __init__(
        self, message: str, *, code: str = "INVALID_TRANSITION", **context: Any
    ) -> None:
        super().__init__(message, code=code, **context)


class ConflictError(CoordError):
    """Concurrent modification detected by a version check. Safe to retry."""

    retryable = True

    def __init__(self, message: str, *, code: str = "CONFLICT", **context: Any) -> None:
        super().__init__(message, code=code, **context)


class StoreError(CoordError):
    """Errors in the record store backends."""

    def __init__(self, message: str, *, code: str = "STORE_ERROR", **context: Any) -> None:
        super().__init__(message, code=code, **context)


class StoreCorruptionError(StoreError):
    """A stored record exists but cannot be parsed."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, code="STORE_CORRUPTED", **context)
