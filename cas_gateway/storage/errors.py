"""
Typed failures raised by the storage gateway.

Every failure path ends in one of these classes so callers can tell
"your input was invalid" apart from "the network is unavailable, try later"
and "the data you asked for is corrupted".
"""
from typing import Optional


class GatewayError(Exception):
    """Base class for all gateway failures."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ValidationError(GatewayError):
    """Caller-supplied input violates the upload policy. Never retried."""


class HashingError(GatewayError):
    """The content address could not be computed. Never retried."""


class BackendError(GatewayError):
    """
    A call to the storage backend failed.

    Attributes:
        transient: True if the failure is worth retrying (timeouts,
            connection failures, 5xx/429 answers, not-yet-propagated content)
        status_code: HTTP status reported by the backend, if any
        attempt: attempt number the failure happened on, set by the retry executor
    """

    transient = True

    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(reason)
        self.status_code = status_code
        self.attempt: Optional[int] = None


class BackendUnavailableError(BackendError):
    """Connection failure or a backend-reported transient error."""


class AttemptTimeoutError(BackendError):
    """A single attempt did not finish within the policy timeout."""


class ContentNotFoundError(BackendError):
    """The backend does not (yet) hold content for the requested root hash."""


class BackendRejectedError(BackendError):
    """The backend refused the request outright (bad batch, malformed reference, ...)."""

    transient = False


class RetryExhaustedError(GatewayError):
    """All attempts failed. Carries the last attempt's underlying error."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(str(last_error))


class IntegrityError(GatewayError):
    """Bytes do not hash to the expected root. Never retried."""

    def __init__(self, expected: str, actual: str, reason: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(reason or f"Content hashes to {actual}, expected {expected}")


class OperationCancelledError(GatewayError):
    """The caller withdrew the request while it was in flight."""


class UploadError(GatewayError):
    """Terminal upload failure after the backend was contacted."""

    def __init__(self, attempts: int, last_reason: str, cause: Optional[GatewayError] = None):
        self.attempts = attempts
        self.last_reason = last_reason
        self.cause = cause
        super().__init__(f"Failed to upload file after {attempts} attempts: {last_reason}")


class DownloadError(GatewayError):
    """Terminal download failure after the backend was contacted."""

    def __init__(
        self,
        root_hash: str,
        attempts: int,
        last_reason: str,
        cause: Optional[GatewayError] = None,
    ):
        self.root_hash = root_hash
        self.attempts = attempts
        self.last_reason = last_reason
        self.cause = cause
        super().__init__(f"Failed to download {root_hash} after {attempts} attempts: {last_reason}")

    @property
    def not_found(self) -> bool:
        """True if the last attempt failed because the content was missing."""
        return isinstance(self.cause, ContentNotFoundError)


class BalanceError(GatewayError):
    """The signing identity's balance could not be read."""
