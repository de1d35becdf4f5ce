"""Context collection for one dictation cycle.

``ContextCollector.collect_context()`` is the single entry point used by the
dictation orchestrator once recording has started. It resolves the
foreground application, captures and encodes a screenshot, and infers a
short activity summary, in that order. The blocking stages run in worker
threads so the caller's event loop stays responsive; inference runs as its
own task so ``abort()`` can cancel it when the user releases the key early.

The call always returns a snapshot. Failures in any stage degrade to a
reason string or the heuristic summary.

Example:
    >>> collector = ContextCollector(ConfigManager().config)
    >>> snapshot = await collector.collect_context()
    >>> print(snapshot.context_summary)
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import requests

from .accessibility import (
    AccessibilityQuery,
    ForegroundResolver,
    ForegroundTarget,
    UNRECOGNIZED_TARGET,
    default_accessibility,
)
from .capture import ScreenshotService
from .config import Config
from .credentials import CredentialStore
from .encoder import Encoded, ImageEncoder, ScreenshotResult, Unavailable
from .inference import ActivityInferenceClient, ActivityMetadata, fallback_activity
from .snapshot import ContextSnapshot
from .windows import WindowCapture, default_window_capture

logger = logging.getLogger(__name__)

UNRECOGNIZED_ACTIVITY = "You are dictating in an unrecognized context."
NO_FRONTMOST_REASON = "No frontmost application"


@dataclass(frozen=True)
class _Evidence:
    """Everything gathered before inference."""
    target: ForegroundTarget
    metadata: ActivityMetadata
    screenshot: ScreenshotResult


class _Cycle:
    """Cancellation handle for one collect_context() call."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop
        self.cancel_event = threading.Event()
        self.task: Optional[asyncio.Future] = None

    def cancel(self) -> None:
        self.cancel_event.set()
        task = self.task
        if task is not None and not task.done():
            self.loop.call_soon_threadsafe(task.cancel)


class ContextCollector:
    """Builds a ContextSnapshot per dictation cycle.

    Cycles keep their own cancellation state, so overlapping calls to
    collect_context() do not interfere with each other.

    Attributes:
        config (Config): Pipeline configuration, passed in explicitly
        resolver (ForegroundResolver): Foreground app and window lookup
        screenshots (ScreenshotService): Permission-gated capture and encoding
        credentials (CredentialStore): Source of the inference API key
    """

    def __init__(
        self,
        config: Config,
        accessibility: Optional[AccessibilityQuery] = None,
        window_capture: Optional[WindowCapture] = None,
        credentials: Optional[CredentialStore] = None,
        session_factory=requests.Session,
    ):
        """
        Args:
            config: Loaded configuration
            accessibility: Accessibility backend (platform default if None)
            window_capture: Window capture backend (platform default if None)
            credentials: Credential store (built from config if None)
            session_factory: Callable returning a requests.Session per cycle
        """
        self.config = config
        self.resolver = ForegroundResolver(accessibility or default_accessibility())
        self.screenshots = ScreenshotService(
            window_capture or default_window_capture(),
            ImageEncoder.from_config(config.capture),
            enabled=config.capture.enabled,
        )
        self.credentials = credentials or CredentialStore.from_config(config.credentials)
        self.session_factory = session_factory

        self._lock = threading.Lock()
        self._cycles: set[_Cycle] = set()

    async def collect_context(self) -> ContextSnapshot:
        """Collect a fresh snapshot of the user's current context.

        Returns:
            ContextSnapshot with a non-empty activity summary
        """
        captured_at = datetime.now()
        cycle = _Cycle(asyncio.get_running_loop())
        with self._lock:
            self._cycles.add(cycle)

        try:
            try:
                evidence = await asyncio.to_thread(self._gather_evidence)
            except Exception:
                logger.exception("Context gathering failed")
                evidence = _Evidence(UNRECOGNIZED_TARGET, ActivityMetadata(), Unavailable(NO_FRONTMOST_REASON))

            if not evidence.target.is_recognized:
                return ContextSnapshot(
                    application_name=None,
                    application_identifier=None,
                    window_title=None,
                    selected_text=None,
                    activity_summary=UNRECOGNIZED_ACTIVITY,
                    screenshot=evidence.screenshot,
                    captured_at=captured_at,
                )

            summary = await self._infer(evidence, cycle)
        finally:
            with self._lock:
                self._cycles.discard(cycle)

        metadata = evidence.metadata
        return ContextSnapshot(
            application_name=metadata.app_name,
            application_identifier=metadata.bundle_identifier,
            window_title=metadata.window_title,
            selected_text=metadata.selected_text,
            activity_summary=summary,
            screenshot=evidence.screenshot,
            captured_at=captured_at,
        )

    def collect_context_sync(self) -> ContextSnapshot:
        """Run collect_context() to completion on a private event loop."""
        return asyncio.run(self.collect_context())

    def abort(self) -> None:
        """Cancel in-flight inference of every running cycle.

        Aborted cycles fall back to the heuristic summary. Safe to call from
        any thread.
        """
        with self._lock:
            cycles = list(self._cycles)
        for cycle in cycles:
            cycle.cancel()
        if cycles:
            logger.info(f"Aborted {len(cycles)} context collection(s)")

    def _gather_evidence(self) -> _Evidence:
        target = self.resolver.resolve_target()
        if not target.is_recognized:
            return _Evidence(target, ActivityMetadata(), Unavailable(NO_FRONTMOST_REASON))

        root = target.accessibility_root
        window_title = self.resolver.focused_window_title(root) or target.app_name
        selected_text = self.resolver.selected_text(root)
        bounds = self.resolver.focused_window_bounds(root)

        screenshot = self.screenshots.capture(target.process_id, window_title, bounds)
        metadata = ActivityMetadata(
            app_name=target.app_name,
            bundle_identifier=target.app_identifier,
            window_title=window_title,
            selected_text=selected_text,
        )
        return _Evidence(target, metadata, screenshot)

    def _run_inference(
        self,
        metadata: ActivityMetadata,
        screenshot_uri: Optional[str],
        cancel_event: threading.Event,
    ) -> str:
        """Worker-thread body: credential lookup, requests and session cleanup."""
        client = ActivityInferenceClient.from_config(
            self.config.inference,
            self.credentials.api_key(),
            session=self.session_factory(),
        )
        try:
            return client.infer_activity(metadata, screenshot_uri, cancel_event)
        finally:
            client.close()

    async def _infer(self, evidence: _Evidence, cycle: _Cycle) -> str:
        screenshot_uri = evidence.screenshot.data_uri if isinstance(evidence.screenshot, Encoded) else None
        fallback = fallback_activity(evidence.metadata.app_name, screenshot_uri is not None)

        if cycle.cancel_event.is_set():
            return fallback

        task = asyncio.ensure_future(asyncio.to_thread(
            self._run_inference, evidence.metadata, screenshot_uri, cycle.cancel_event
        ))
        cycle.task = task

        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            cycle.cancel_event.set()
            task.cancel()
            raise

        if task.cancelled() or cycle.cancel_event.is_set():
            logger.info("Inference aborted, using fallback summary")
            return fallback
        try:
            summary = task.result()
        except Exception:
            logger.exception("Activity inference raised")
            return fallback
        return summary if summary and summary.strip() else fallback
