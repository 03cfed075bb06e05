"""
Error taxonomy for the import / grouping pipeline.

Only persistence failures are meant to abort a run. Reasoning-service
failures are raised inside the services and absorbed there.
"""

from __future__ import annotations


class RequirementsHubError(Exception):
    """Base class for all project errors."""


class SpreadsheetError(RequirementsHubError):
    """The uploaded workbook could not be read."""


class ImportValidationError(RequirementsHubError):
    """The uploaded workbook contained nothing importable."""


class PersistenceError(RequirementsHubError):
    """The requirement store is unreachable or rejected a write."""


class ClusteringTransientError(RequirementsHubError):
    """Timeout, transport error or unusable output from the reasoning service."""


class RetryExhaustedError(RequirementsHubError):
    """Every attempt allowed by a RetryPolicy failed."""

    def __init__(self, attempts: int, last_error: BaseException | None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
