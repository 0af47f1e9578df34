"""
StubTap Error Types

Exceptions raised by the stub registry, request matcher, scenario store and
schema-driven data generators.
"""

from typing import Any, Dict, List, Optional


class StubTapError(Exception):
    """Base exception for all StubTap errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with context if available."""
        if self.context:
            details = ', '.join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({details})"
        return self.message


class ValidationError(StubTapError):
    """
    Raised when a stub definition is rejected at registration time.

    Examples:
    - Empty HTTP method
    - Malformed path template
    - Matcher with unknown match kind or target
    """

    pass


class NotFoundError(StubTapError):
    """
    Raised when no registered stub matches a request.

    Carries ``closest`` - a short list of near-miss stubs for debugging.
    The list is diagnostic only and must never be used to pick a fallback.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        closest: Optional[List[Dict[str, Any]]] = None
    ):
        self.closest = closest or []
        super().__init__(message, context)


class SchemaCycleError(StubTapError):
    """Raised when a $ref chain repeats a name or exceeds the maximum depth."""

    def __init__(self, message: str, ref_path: Optional[List[str]] = None):
        self.ref_path = list(ref_path or [])
        super().__init__(message, {'ref_path': ' -> '.join(self.ref_path)} if self.ref_path else None)


class SchemaValidationError(StubTapError):
    """Raised when a schema node is malformed (e.g. unknown kind)."""

    pass


class ConcurrencyConflict(StubTapError):
    """Raised when compare-and-swap retries on a stub's use counter run out."""

    pass
