"""
Pipeline error hierarchy.

CollaboratorError   — mail or inference call failed (retried by stage policy)
SchedulingError     — enqueue/cancel against the job store failed
TerminalStageFailure — a stage job exhausted its retry budget
MalformedPayloadError — a job payload could not be decoded (fails fast)
"""
from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base exception for all pipeline operations."""

    retryable: bool = True


class CollaboratorError(PipelineError):
    def __init__(self, message: str, collaborator: str = "", retryable: bool = True):
        self.collaborator = collaborator
        self.retryable = retryable
        super().__init__(message)


class MailClientError(CollaboratorError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, collaborator="mail")


class InferenceError(CollaboratorError):
    def __init__(self, message: str):
        super().__init__(message, collaborator="inference")


class SchedulingError(PipelineError):
    def __init__(self, message: str, queue: str = ""):
        self.queue = queue
        super().__init__(message)


class NonRetryableError(PipelineError):
    """Raised by a stage to skip the remaining retry budget."""

    retryable = False


class MalformedPayloadError(NonRetryableError):
    def __init__(self, message: str, kind: str = ""):
        self.kind = kind
        super().__init__(message)


class TerminalStageFailure(PipelineError):
    """Record of a job whose retries are exhausted. Logged, never raised upstream."""

    retryable = False

    def __init__(self, job_id: str, stage: str, last_error: str):
        self.job_id = job_id
        self.stage = stage
        self.last_error = last_error
        super().__init__(f"{stage} job {job_id} failed terminally: {last_error}")


def is_retryable(exc: BaseException) -> bool:
    """Anything that is not explicitly marked non-retryable is retried."""
    return getattr(exc, "retryable", True) is not False
