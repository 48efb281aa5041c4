"""
Error Taxonomy - Discriminated Failures for the Route Layer
===========================================================

Every failure leaving the core is one of four kinds. Each exception carries
a stable ``kind`` string so the caller can map it to a response without
inspecting storage internals:

    not_found            -> 404
    invalid_transition   -> 409
    constraint_violation -> 409 / 422
    backend_unavailable  -> 503

Storage exceptions (sqlite3, Google API) never escape raw; backends wrap
them in BackendUnavailableError and chain the original as ``__cause__``.
"""

from typing import Any, Dict, Optional


class TchoufError(Exception):
    """Base exception for all core errors."""

    kind = "error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class NotFoundError(TchoufError):
    """An id (or slug) does not resolve to a stored entity."""

    kind = "not_found"

    def __init__(self, entity: str, identifier: Any):
        super().__init__(f"{entity} {identifier!r} not found", entity=entity, identifier=identifier)
        self.entity = entity
        self.identifier = identifier


class InvalidTransitionError(TchoufError):
    """A claim decision on a terminal claim, or with an unknown outcome."""

    kind = "invalid_transition"


class ConstraintViolationError(TchoufError):
    """A write would break a cross-entity invariant."""

    kind = "constraint_violation"


class BackendUnavailableError(TchoufError):
    """Transport or storage failure reported by a repository backend."""

    kind = "backend_unavailable"

    def __init__(self, operation: str, reason: Optional[str] = None):
        message = f"Storage backend failed during {operation}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, operation=operation)
        self.operation = operation
