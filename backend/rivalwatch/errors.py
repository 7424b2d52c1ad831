"""Failure taxonomy shared by services and workflows.

Anything deriving from `NonRetryableError` is terminal: the workflow engine
fails the instance on the first occurrence instead of spending the step's
retry budget. Everything else is treated as transient.
"""
from __future__ import annotations


class NonRetryableError(Exception):
    """Terminal failure; retrying without new data cannot succeed."""


class ContentNotFoundError(NonRetryableError):
    """One or both text snapshots needed for a diff are missing."""

    MESSAGES = {
        "first": "First content version not found",
        "second": "Second content version not found",
        "both": "Both content versions not found",
    }

    def __init__(self, which: str) -> None:
        self.which = which
        super().__init__(self.MESSAGES[which])


class CompetitorNotFoundError(NonRetryableError):
    def __init__(self, competitor_id: int) -> None:
        self.competitor_id = competitor_id
        super().__init__(f"Competitor with ID {competitor_id} not found")


class CaptureFailedError(NonRetryableError):
    """Capture returned without any stored blob paths."""


class DiffRefusedError(NonRetryableError):
    """The differencing collaborator declined to produce structured output."""


class NoDifferencesError(NonRetryableError):
    pass


class LLMUnavailableError(NonRetryableError):
    pass


class CaptureServiceError(Exception):
    """Transient capture vendor failure (HTTP error, timeout, rate limit)."""


class InvalidRunRangeError(ValueError):
    pass
