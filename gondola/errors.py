"""Error taxonomy shared by the queue, worker, mapping store and security gate.

Each error carries the HTTP status the admin API answers with, so route handlers
can simply let them propagate.
"""

from __future__ import annotations


class GondolaError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(GondolaError):
    """Bad input, e.g. a malformed IP or an out-of-range setting."""

    status_code = 400


class NotFoundError(GondolaError):
    """Unknown job, mapping, rule or entity id."""

    status_code = 404


class ConflictError(GondolaError):
    """State conflict, e.g. a duplicate active mapping."""

    status_code = 409


class RateLimitExceeded(GondolaError):
    """Request rejected by the security gate."""

    status_code = 429

    def __init__(self, message: str, retry_after: int | None = None, **details):
        super().__init__(message, **details)
        self.retry_after = retry_after


class InfrastructureError(GondolaError):
    """Browser crash, navigation failure or network outage. Jobs retry on it."""

    status_code = 503


class PartialExtractionFailure(GondolaError):
    """A single store failed during an extraction run that kept going."""

    status_code = 500

    def __init__(self, store: str, message: str):
        super().__init__(f"{store}: {message}", store=store)
        self.store = store
        self.reason = message


class JobCancelled(Exception):
    """Raised inside a running job once cancellation has been observed."""

    def __init__(self, job_id: int, reason: str = "cancelled"):
        super().__init__(f"Job {job_id} {reason}")
        self.job_id = job_id
        self.reason = reason
