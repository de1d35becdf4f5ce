"""The per-dictation context snapshot."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .encoder import Encoded, ScreenshotResult, Unavailable


@dataclass(frozen=True)
class ContextSnapshot:
    """Immutable record of what the user was doing when dictation started.

    Built once per recording, attached to one transcription request and then
    discarded.

    Attributes:
        application_name: Localized name of the frontmost application
        application_identifier: Bundle id (macOS) or WM_CLASS instance (X11)
        window_title: Focused window title, or the app name when unknown
        selected_text: Selected text, trimmed with newlines collapsed
        activity_summary: One or two sentences, never empty
        screenshot: Encoded image or the reason there is none
        captured_at: When collection started
    """
    application_name: Optional[str]
    application_identifier: Optional[str]
    window_title: Optional[str]
    selected_text: Optional[str]
    activity_summary: str
    screenshot: ScreenshotResult
    captured_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not self.activity_summary or not self.activity_summary.strip():
            raise ValueError("activity_summary must not be empty")
        if not isinstance(self.screenshot, (Encoded, Unavailable)):
            raise TypeError(f"Unexpected screenshot value: {self.screenshot!r}")

    @property
    def screenshot_status(self) -> str:
        if isinstance(self.screenshot, Unavailable):
            return self.screenshot.reason
        return f"available ({self.screenshot.mime_type or 'image'})"

    @property
    def screenshot_data_uri(self) -> Optional[str]:
        if isinstance(self.screenshot, Encoded):
            return self.screenshot.data_uri
        return None

    @property
    def context_summary(self) -> str:
        """Text block handed to the transcript post-processor."""
        lines = [f"Current activity: {self.activity_summary}"]
        lines.append(f"Current app: {self.application_name or 'Unknown'}")

        if self.application_identifier:
            lines.append(f"Bundle ID: {self.application_identifier}")
        if self.window_title:
            lines.append(f"Window: {self.window_title}")
        if self.selected_text:
            lines.append(f"Visible selected text:\n{self.selected_text}")
        lines.append(f"Screenshot status: {self.screenshot_status}")

        return "\n".join(lines)

    def to_dict(self, include_image: bool = False) -> dict:
        data = {
            'application_name': self.application_name,
            'application_identifier': self.application_identifier,
            'window_title': self.window_title,
            'selected_text': self.selected_text,
            'activity_summary': self.activity_summary,
            'screenshot_status': self.screenshot_status,
            'captured_at': self.captured_at.isoformat(),
        }
        if include_image:
            data['screenshot_data_uri'] = self.screenshot_data_uri
        return data
