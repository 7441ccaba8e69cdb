"""Error taxonomy shared by ingestion and query paths."""

import warnings
from typing import Any, Optional

from loguru import logger


class AnalyticsError(Exception):
    """Base class for every error raised by analytics_core."""


class ValidationError(AnalyticsError):
    """Malformed input. Never retried; surfaced to the caller as a client error."""

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class DecodeError(AnalyticsError):
    """A single stream payload could not be decoded into an event."""

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class StorageError(AnalyticsError):
    """Backend unavailable, timed out or rejected a write."""

    def __init__(
            self,
            message: str,
            *,
            operation: str,
            backend: Optional[str] = None,
            retryable: bool = True,
    ):
        super().__init__(message)
        self.operation = operation
        self.backend = backend
        self.retryable = retryable


class PartialParseWarning(UserWarning):
    """An optional field could not be interpreted and was stored as null."""


def report_partial_parse(field: str, value: Any):
    """Logs the offending value; the warning text carries the field name only."""
    logger.warning(f"Ignoring unparseable {field}: {value!r:.120}")
    warnings.warn(f"Ignoring unparseable {field}", PartialParseWarning, stacklevel=3)
