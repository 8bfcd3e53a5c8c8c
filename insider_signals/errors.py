"""Error taxonomy for the detection and dispatch cycles.

Processors catch per-item errors, log them with ids, and count them.
Anything that escapes a processor is fatal for that processor's run and
is converted into a structured error result by the cycle entry points.
"""


class SignalError(RuntimeError):
    """Base class for errors raised by this package."""


class DetectionError(SignalError):
    """A whole-cycle step of a processor failed (invalidation, purge)."""

    def __init__(self, processor: str, step: str, cause: BaseException | None = None):
        self.processor = processor
        self.step = step
        self.cause = cause
        msg = f"{processor}: {step} failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class MailConfigError(SignalError):
    """Mail transport is not configured (missing key/domain)."""


class MailSendError(SignalError):
    """Transport refused or failed one message. Retried via queue attempts."""

    def __init__(self, message: str, *, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
