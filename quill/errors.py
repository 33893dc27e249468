from __future__ import annotations

from typing import Any, Dict, List, Optional


__all__ = [
    "RepositoryError",
    "NotFoundError",
    "ValidationError",
    "PermissionDeniedError",
    "ConflictError",
    "StorageError",
    "DependencyFailure",
    "RenderError",
    "NotificationError",
    "TagReconcileError",
]


class RepositoryError(Exception):
    """Base error for repository operations."""

    kind = "repository"

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(RepositoryError):
    """The requested post or tag does not exist."""

    kind = "not_found"


class ValidationError(RepositoryError):
    """A required field is missing or a value is outside its whitelist."""

    kind = "validation"


class PermissionDeniedError(RepositoryError):
    """The acting context may not perform the operation."""

    kind = "permission_denied"


class ConflictError(RepositoryError):
    """A uniqueness constraint rejected the write."""

    kind = "conflict"


class StorageError(RepositoryError):
    """The database failed for a reason other than a constraint."""

    kind = "storage"


class DependencyFailure(RepositoryError):
    """A collaborator outside the repository failed."""

    kind = "dependency"


class RenderError(DependencyFailure):
    """Markdown could not be rendered to HTML."""


class NotificationError(DependencyFailure):
    """The publish ping could not be emitted."""


class TagReconcileError(RepositoryError):
    """One or more tag operations failed while syncing a post's tags.

    Operations that succeeded before the failure stay applied; ``result``
    describes them and ``errors`` holds every failure.
    """

    kind = "tag_sync"

    def __init__(self, message: str, errors: List[BaseException], result: Optional[Any] = None):
        super().__init__(message, failures=[str(error) for error in errors])
        self.errors = errors
        self.result = result
