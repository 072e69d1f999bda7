"""
errors.py

Error kinds raised by the topology and alarm services. The HTTP layer maps
each to a status code via `status_code`; services never build HTTP responses.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class GridError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class InvalidTopology(GridError):
    status_code = 400
    code = "INVALID_TOPOLOGY"

    def __init__(self, from_type: str, to_type: str):
        super().__init__(f"Invalid connection between {from_type} and {to_type}")
        self.from_type = from_type
        self.to_type = to_type


class NotFound(GridError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource", message: Optional[str] = None):
        super().__init__(message or f"{resource} not found")
        self.resource = resource


class ValidationError(GridError):
    status_code = 422
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def field(cls, path: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"path": path, "message": message}])

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["errors"] = self.errors
        return out


class Conflict(GridError):
    status_code = 409
    code = "CONFLICT"


class TransientStoreError(GridError):
    """Timeout or connectivity failure in the backing store. Safe to retry."""

    status_code = 503
    code = "STORE_UNAVAILABLE"
