"""
StubTap Common Utilities

Shared utilities, error types and concurrency helpers used across StubTap modules.
"""

from .utils import DocumentLoader, safe_json_parse, normalize_headers, filter_interesting_headers
from .concurrency import ReadWriteLock, AtomicCounter
from .errors import (
    StubTapError,
    ValidationError,
    NotFoundError,
    SchemaCycleError,
    SchemaValidationError,
    ConcurrencyConflict,
)

__all__ = [
    'DocumentLoader',
    'safe_json_parse',
    'normalize_headers',
    'filter_interesting_headers',
    'ReadWriteLock',
    'AtomicCounter',
    'StubTapError',
    'ValidationError',
    'NotFoundError',
    'SchemaCycleError',
    'SchemaValidationError',
    'ConcurrencyConflict',
]
