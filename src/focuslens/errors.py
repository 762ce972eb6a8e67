"""Exception hierarchy for focuslens.

Consumers treat ``TransientInfraError`` as retryable and ``TaskHandlingError``
as local to one record. ``FatalStartupError`` is only raised while a process
boots and makes the CLI exit non-zero.
"""

from __future__ import annotations

from typing import Any


class FocusLensError(Exception):
    """Root exception for all focuslens domain errors."""


class EventValidationError(FocusLensError):
    """Inbound event payload failed schema validation."""

    def __init__(self, errors: list[dict[str, Any]]) -> None:
        super().__init__(f"Validation failed ({len(errors)} error(s))")
        self.errors = errors


class IngestionError(FocusLensError):
    """A valid event could not be appended to the event stream."""


class TransientInfraError(FocusLensError):
    """Stream or storage temporarily unreachable."""


class StreamUnavailableError(TransientInfraError):
    """The stream backend rejected or failed a command."""


class FatalStartupError(FocusLensError):
    """A required dependency is unreachable while the process starts."""


class TaskHandlingError(FocusLensError):
    """Failure confined to a single stream record."""


class RecordDecodeError(TaskHandlingError):
    """A stream record could not be decoded into a known payload."""


class InsightGenerationError(TaskHandlingError):
    """The completion API call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
