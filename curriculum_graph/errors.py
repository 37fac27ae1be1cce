"""
Exception hierarchy for curriculum graph operations.
"""

from typing import Optional


class CurriculumGraphError(Exception):
    """Base exception for curriculum graph operations."""
    pass


class ParseError(CurriculumGraphError):
    """Raised when an extraction response cannot be parsed into the expected JSON shape."""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message)
        self.raw_response = raw_response


class StageFailure(CurriculumGraphError):
    """Raised when an extraction stage fails and the remaining stages are aborted."""

    def __init__(self, stage: str, message: str, attempts: int = 1):
        super().__init__(f"Stage '{stage}' failed: {message}")
        self.stage = stage
        self.attempts = attempts


class TransientServiceError(CurriculumGraphError):
    """
    Raised by completion collaborators for retryable conditions
    (rate limits, overloaded service, dropped connections).
    """
    pass


class CycleWarning(UserWarning):
    """Issued when a committed change leaves the prerequisite subgraph cyclic."""
    pass
