# FILE: capsule/services/errors.py
"""
Error taxonomy for memory record operations

Each error carries the HTTP status and the short ``error`` kind the API
reports, so the route layer can map them without inspecting messages.
"""
from typing import Optional


class CapsuleError(Exception):
    """Base class for all domain errors"""

    status_code = 500
    error = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.error)
        self.message = message or self.error


class ValidationError(CapsuleError):
    """Request payload is invalid (e.g. missing title)"""

    status_code = 400
    error = "validation_error"


class NotFound(CapsuleError):
    """No record exists at the requested code"""

    status_code = 404
    error = "not_found"


class Forbidden(CapsuleError):
    """Secret key missing or wrong"""

    status_code = 403
    error = "forbidden"

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class ExhaustionError(CapsuleError):
    """No free code found within the allocation attempt cap"""

    status_code = 503
    error = "code_exhausted"


class StorageError(CapsuleError):
    """A blob or metadata store operation failed"""

    status_code = 500
    error = "storage_error"

    def __init__(self, message: str, store: str, key: Optional[str] = None):
        self.store = store
        self.key = key
        target = f"{store}:{key}" if key else store
        super().__init__(f"[{target}] {message}")


class ConfigurationError(CapsuleError):
    """Required deployment configuration is missing"""

    status_code = 500
    error = "configuration_error"


class KeyExistsError(CapsuleError):
    """An exclusive create found the key already taken"""

    status_code = 409
    error = "conflict"

    def __init__(self, message: str, store: str, key: str):
        self.store = store
        self.key = key
        super().__init__(f"[{store}:{key}] {message}")
