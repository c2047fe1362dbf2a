"""Exception types raised by remote service handles and the batch driver."""

from __future__ import annotations

TRANSPORT_ERROR = "TransportError"


class BulkOpsError(Exception):
    """Base class for all bulkops errors."""


class ServiceConnectionError(BulkOpsError, ConnectionError):
    """Raised when the data service cannot be reached or rejects the credentials.

    Fatal: nothing is dispatched once this is raised.
    """


class RemoteError(BulkOpsError):
    """A single remote call failed.

    Per-record occurrences are captured as failure outcomes by the driver
    and never reach the caller.
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        """Transport failures, throttling and server-side errors may clear on their own."""
        if self.error_code == TRANSPORT_ERROR:
            return True
        return self.status_code is not None and (self.status_code == 429 or self.status_code >= 500)

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class JobPollingError(BulkOpsError):
    """Raised when an async job does not reach a terminal state within its poll budget."""

    def __init__(self, job_id: str, last_status: str | None, attempts: int) -> None:
        super().__init__(
            f"job {job_id} did not complete after {attempts} polls "
            f"(last status: {last_status or 'unknown'})"
        )
        self.job_id = job_id
        self.last_status = last_status
        self.attempts = attempts


class ProvisioningError(BulkOpsError):
    """Raised when a table cannot be created or dropped."""
