"""
Standardised error handling for ClipCutter.

Every failure that crosses a module boundary is a JobError subclass; raw
subprocess / requests exceptions are translated where they are caught.
"""

from clipcutter.core.constants import ErrorCode, RETRYABLE_ERRORS


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    def __init__(self, code: str, message: str, retryable: bool | None = None):
        self.code = code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else (code in RETRYABLE_ERRORS)
        super().__init__(f"[{code}] {message}")


class InvalidInput(JobError):
    def __init__(self, message: str, code: str = ErrorCode.INVALID_INPUT):
        super().__init__(code, message)


class LaunchFailure(JobError):
    """The executable is missing, empty or could not be spawned."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.LAUNCH_FAILED, message)


class ProcessTimeout(JobError):
    """The process outlived its deadline and was killed."""

    def __init__(self, duration: float):
        self.duration = duration
        super().__init__(ErrorCode.PROCESS_TIMEOUT,
                         f"Process timed out after {int(duration)} seconds")


class JobCancelled(JobError):
    def __init__(self, message: str = "Cancelled by user"):
        super().__init__(ErrorCode.CANCELLED, message)


class ToolReportedFailure(JobError):
    """
    An external tool exited non-zero or printed a recognised error.
    `message` is the user-facing text; `details` keeps the raw output.
    """

    def __init__(self, message: str, exit_code: int | None = None, details: str = ""):
        self.exit_code = exit_code
        self.details = details
        super().__init__(ErrorCode.TOOL_FAILED, message)


class NetworkTransient(JobError):
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(ErrorCode.NETWORK_TRANSIENT, message, retryable=True)


class NetworkPermanent(JobError):
    def __init__(self, message: str, status_code: int | None = None,
                 code: str = ErrorCode.NETWORK_PERMANENT):
        self.status_code = status_code
        super().__init__(code, message, retryable=False)


class InsufficientCredits(NetworkPermanent):
    def __init__(self, message: str = "Free clips used up. Enter a license key for unlimited clipping."):
        super().__init__(message, status_code=400, code=ErrorCode.INSUFFICIENT_CREDITS)


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS
