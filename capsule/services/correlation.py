# FILE: capsule/services/correlation.py
"""
Correlation ID utilities
"""
import uuid
from contextvars import ContextVar
from typing import Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def generate_correlation_id() -> str:
    """Generate unique correlation ID"""
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind a correlation ID to the current request context"""
    value = correlation_id or generate_correlation_id()
    _correlation_id.set(value)
    return value


def get_correlation_id() -> str:
    """Get the correlation ID bound to the current context, creating one if absent"""
    value = _correlation_id.get()
    if value is None:
        value = set_correlation_id()
    return value
