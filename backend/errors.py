"""Error taxonomy for the Just Read It backend.

Every failure the note pipeline can surface is an ``ApplicationError`` carrying a
stable code, a category and the HTTP status it maps to. Layers either recover
(and log) or re-raise their own kind unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERSISTENCE = "persistence"
    SYNC = "sync"
    EXTERNAL = "external"
    INTERNAL = "internal"


_STATUS_BY_CATEGORY = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.PERSISTENCE: 500,
    ErrorCategory.SYNC: 500,
    ErrorCategory.EXTERNAL: 502,
    ErrorCategory.INTERNAL: 500,
}


@dataclass(eq=False)
class ApplicationError(Exception):
    """Base class for all errors raised by the backend."""

    code: str
    message: str
    category: ErrorCategory = ErrorCategory.INTERNAL
    details: Optional[Dict[str, Any]] = None
    cause: Optional[BaseException] = None

    def __post_init__(self):
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    @property
    def http_status_code(self) -> int:
        return _STATUS_BY_CATEGORY.get(self.category, 500)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "status": "error",
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(ApplicationError):
    """A required field is missing or malformed. Nothing was written."""

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            category=ErrorCategory.VALIDATION,
            details={"fields": fields} if fields else None,
        )
        self.fields = fields or []


class NotFoundError(ApplicationError):
    def __init__(self, resource_type: str, resource_id: Any, message: Optional[str] = None):
        super().__init__(
            code="NOT_FOUND",
            message=message or f"{resource_type} not found: {resource_id}",
            category=ErrorCategory.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id)},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class PersistenceError(ApplicationError):
    """A relational read or write failed."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        super().__init__(
            code="PERSISTENCE_ERROR",
            message=f"Database operation failed: {operation}",
            category=ErrorCategory.PERSISTENCE,
            details={"operation": operation},
            cause=cause,
        )
        self.operation = operation


class GraphSyncError(ApplicationError):
    """Replacing a note's cross-reference edges failed and was rolled back."""

    def __init__(self, note_id: Any, cause: Optional[BaseException] = None):
        super().__init__(
            code="GRAPH_SYNC_ERROR",
            message=f"Failed to synchronize links for note {note_id}",
            category=ErrorCategory.SYNC,
            details={"note_id": str(note_id)},
            cause=cause,
        )
        self.note_id = note_id


class IndexSyncError(ApplicationError):
    """Embedding or vector upsert failed; the note text itself is saved."""

    def __init__(self, note_id: Any, stage: str, cause: Optional[BaseException] = None):
        super().__init__(
            code="INDEX_SYNC_ERROR",
            message=f"Note {note_id} was saved but its search data may be stale ({stage} failed)",
            category=ErrorCategory.SYNC,
            details={"note_id": str(note_id), "stage": stage},
            cause=cause,
        )
        self.note_id = note_id
        self.stage = stage


class ProviderError(ApplicationError):
    """The embedding provider failed (transport, quota or model error)."""

    def __init__(self, provider: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(
            code="PROVIDER_ERROR",
            message=f"{provider}: {message}",
            category=ErrorCategory.EXTERNAL,
            details={"provider": provider},
            cause=cause,
        )
        self.provider = provider


class SearchError(ApplicationError):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(
            code="SEARCH_ERROR",
            message=message,
            category=ErrorCategory.INTERNAL,
            cause=cause,
        )


class ConfigurationError(ApplicationError):
    def __init__(self, key: str, message: str):
        super().__init__(
            code="CONFIGURATION_ERROR",
            message=f"Invalid configuration [{key}]: {message}",
            category=ErrorCategory.INTERNAL,
            details={"key": key},
        )


__all__ = [
    "ErrorCategory",
    "ApplicationError",
    "ValidationError",
    "NotFoundError",
    "PersistenceError",
    "GraphSyncError",
    "IndexSyncError",
    "ProviderError",
    "SearchError",
    "ConfigurationError",
]
