"""
Application-level exception types.

Domain failures raised by the storage, export and deletion services. The
FastAPI layer maps each family onto an HTTP status in ``app.main``.
"""

from __future__ import annotations


class AppError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        self.detail = detail or message
        super().__init__(message)


class ConfigurationError(AppError):
    """Raised when required configuration is missing or invalid."""


class ExportValidationError(AppError):
    """Raised when an export request is malformed (missing fields, bad ids)."""


class EntityNotFoundError(AppError):
    """Raised when a database entity cannot be found."""

    def __init__(self, entity_type: str, entity_id: object) -> None:
        super().__init__(
            f"{entity_type} not found: {entity_id}",
            detail=f"{entity_type} not found",
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class ExportNotFoundError(EntityNotFoundError):
    """Raised when an export job does not exist."""

    def __init__(self, export_id: object) -> None:
        super().__init__("export", export_id)


class StorageError(AppError):
    """Raised when the object store or filesystem rejects an operation."""


class ObjectNotFoundError(StorageError):
    """Raised when a blob is absent from its bucket or legacy path."""

    def __init__(self, location: str) -> None:
        super().__init__(f"object not found: {location}", detail="object not found")
        self.location = location
