"""Exception hierarchy for the AI orchestration layer.

Only configuration, caller-input and storage errors reach callers.
Model invocation errors are raised by backends and always absorbed by the
executor, which serves the task fallback instead.
"""

from __future__ import annotations


class AiOrchestrationError(Exception):
    """Base class for errors raised by this package."""


class UnknownTaskTypeError(AiOrchestrationError, LookupError):
    """Task type is not registered; a deployment or programming mistake."""

    def __init__(self, task_type: object) -> None:
        super().__init__(f"Unknown AI task type: {task_type!r}")
        self.task_type = task_type


class InvalidInputError(AiOrchestrationError, ValueError):
    """Caller-supplied value failed validation."""


class TaskNotFoundError(AiOrchestrationError, LookupError):
    """Referenced task invocation does not exist."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"AI task invocation not found: {job_id}")
        self.job_id = job_id


class PersistenceError(AiOrchestrationError):
    """Audit storage could not record or read data."""


class ModelInvocationError(AiOrchestrationError):
    """Model call did not produce a usable response."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ModelUnavailableError(ModelInvocationError):
    """No configured provider can serve the request."""


class ModelTimeoutError(ModelInvocationError):
    """Model call exceeded its wall-clock budget."""


class ModelHttpError(ModelInvocationError):
    """Provider answered with a non-2xx status or the transport failed."""


class ModelResponseError(ModelInvocationError):
    """Provider answered 2xx but the envelope carried no completion text."""
