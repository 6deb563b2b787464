from __future__ import annotations

from typing import Any, Dict, Optional


class StorageError(Exception):
    """Base class for storage-layer failures."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class RecordNotFound(StorageError):
    """Raised when a lookup, update or delete targets an absent record."""


class ConstraintViolation(StorageError):
    """Raised when a storage-layer uniqueness constraint is violated."""


__all__ = ["StorageError", "RecordNotFound", "ConstraintViolation"]
