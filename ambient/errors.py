"""Error taxonomy for the context capture pipeline.

Every error defined here is raised by the stage that detects it and absorbed
at that stage's boundary. None of them escape ``collect_context()``; callers
only ever see a descriptive reason string on the snapshot.

Example:
    >>> try:
    ...     selector.select_capture_target(pid, title, bounds)
    ... except CaptureUnavailable as e:
    ...     print(f"Screenshot skipped: {e}")
"""

from typing import Optional


class ContextCaptureError(Exception):
    """Base class for all pipeline errors.

    Attributes:
        reason (str): Human-readable explanation, suitable for display in the
            snapshot's screenshot status.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class PermissionDenied(ContextCaptureError):
    """Accessibility or screen-recording permission has not been granted."""
    pass


class CaptureUnavailable(ContextCaptureError):
    """The window list could not be read or no capturable image was produced."""
    pass


class EncodingBudgetExceeded(ContextCaptureError):
    """Every rung of the encoding ladder produced a payload over budget."""
    pass


class InferenceError(ContextCaptureError):
    """A single activity inference attempt failed."""
    pass


class NetworkFailure(InferenceError):
    """Transport failure, timeout or non-200 status from the inference endpoint."""

    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(reason)
        self.status_code = status_code


class InvalidResponse(InferenceError):
    """The endpoint answered 200 but the body was unusable."""
    pass


class NoCredential(ContextCaptureError):
    """No inference API key is configured; inference is skipped."""
    pass
