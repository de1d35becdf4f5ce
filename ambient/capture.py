"""Screenshot capture for the context snapshot.

This module ties window selection and adaptive encoding together behind the
screen-recording permission gate. It never raises: every failure becomes an
``Unavailable`` result whose reason is shown to the user as the screenshot
status.

The module handles:
- Screen-recording permission pre-flight before any capture attempt
- Window-list failures and capture failures
- Encoding the captured image within the transport budget

Key Classes:
    ScreenshotService: Permission gate, selection and encoding in one call

Example:
    >>> from ambient.capture import ScreenshotService
    >>> service = ScreenshotService(capture_backend, encoder)
    >>> result = service.capture(pid, "Inbox - Mail", focused_rect)
    >>> if isinstance(result, Unavailable):
    ...     print(f"Screenshot status: {result.reason}")
"""

import logging
from typing import Optional

from .encoder import Encoded, ImageEncoder, ScreenshotResult, Unavailable
from .errors import ContextCaptureError, PermissionDenied
from .geometry import Rect
from .windows import WindowCapture, WindowSelector

logger = logging.getLogger(__name__)

PERMISSION_REASON = (
    "Screen recording permission not granted. "
    "Enable in System Settings > Privacy & Security > Screen Recording."
)
DISABLED_REASON = "Screenshot capture disabled in configuration"


class ScreenshotService:
    """Captures and encodes a screenshot of the user's focused window.

    Attributes:
        backend (WindowCapture): Platform capture capability
        selector (WindowSelector): Chooses which window to capture
        encoder (ImageEncoder): Fits the image into the size budget
        enabled (bool): When False, capture is skipped entirely
    """

    def __init__(self, backend: WindowCapture, encoder: ImageEncoder, enabled: bool = True):
        self.backend = backend
        self.selector = WindowSelector(backend)
        self.encoder = encoder
        self.enabled = enabled

    def capture(
        self,
        process_id: Optional[int],
        focused_window_title: Optional[str],
        focused_window_bounds: Optional[Rect],
    ) -> ScreenshotResult:
        """Capture the focused window (or the screen) and encode it.

        Args:
            process_id: PID of the frontmost application
            focused_window_title: Accessibility title of the focused window
            focused_window_bounds: Accessibility frame of the focused window

        Returns:
            Encoded screenshot, or Unavailable with a displayable reason
        """
        if not self.enabled:
            return Unavailable(DISABLED_REASON)

        try:
            return self._capture_or_raise(process_id, focused_window_title, focused_window_bounds)
        except ContextCaptureError as e:
            logger.info(f"Screenshot unavailable: {e.reason}")
            return Unavailable(e.reason)
        except Exception as e:
            logger.exception("Unexpected screenshot failure")
            return Unavailable(f"Could not capture screenshot: {e}")

    def _capture_or_raise(
        self,
        process_id: Optional[int],
        focused_window_title: Optional[str],
        focused_window_bounds: Optional[Rect],
    ) -> Encoded:
        """
        Raises:
            PermissionDenied: If screen recording is not permitted
            CaptureUnavailable: If no image could be captured
            EncodingBudgetExceeded: If the image never fits the budget
        """
        if not self.backend.preflight_access():
            raise PermissionDenied(PERMISSION_REASON)

        captured = self.selector.select_capture_target(
            process_id, focused_window_title, focused_window_bounds
        )
        return self.encoder.encode_or_raise(captured.image)
