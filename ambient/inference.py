"""
Activity inference from window metadata and an optional screenshot.

Sends the resolved app/window metadata (and, when available, the encoded
screenshot) to an OpenAI-compatible chat-completion endpoint and asks for a
two-sentence description of what the user is doing. Inference is best
effort: a missing key, a failed request or an unusable answer all end in a
deterministic fallback sentence, never in an exception.

Uses the HTTP API directly via requests.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Optional

import requests

from .config import InferenceConfig
from .errors import InferenceError, InvalidResponse, NetworkFailure, NoCredential

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a context synthesis assistant for a speech-to-text pipeline.\n"
    "Given app/window metadata and an optional screenshot, output exactly two sentences "
    "that describe what the user is doing right now and the likely writing intent in the "
    "current window.\n"
    "Prioritize concrete details only from the context: for email, identify recipients, "
    "subject or thread cues, and whether the user is replying or composing; for "
    "terminal/code/text work, identify the active command, file, document title, or topic.\n"
    "If details are missing, state uncertainty instead of inventing facts.\n"
    "Return only two sentences, no labels, no markdown, no extra commentary."
)

TEXT_ONLY_INSTRUCTION = "Analyze the context and infer the user's current activity in exactly two sentences."
VISION_INSTRUCTION = "Analyze the screenshot plus metadata to infer current activity."

_SENTENCE_BREAK = re.compile(r"[.!?。]")


@dataclass(frozen=True)
class ActivityMetadata:
    """What the accessibility layer knows about the foreground window."""
    app_name: Optional[str] = None
    bundle_identifier: Optional[str] = None
    window_title: Optional[str] = None
    selected_text: Optional[str] = None

    def format(self) -> str:
        return (
            f"App: {self.app_name or 'Unknown'}\n"
            f"Bundle ID: {self.bundle_identifier or 'Unknown'}\n"
            f"Window: {self.window_title or 'Unknown'}\n"
            f"Selected text: {self.selected_text or 'None'}"
        )


@dataclass(frozen=True)
class ModelAttempt:
    model: str
    include_screenshot: bool


def normalize_activity_summary(value: str) -> str:
    """Cap a model answer at two sentences.

    Splits on ASCII and ideographic sentence terminators. Text with more than
    two non-empty fragments is rebuilt from the first two; anything else is
    returned unchanged.

    Example:
        >>> normalize_activity_summary("A. B. C.")
        'A. B.'
    """
    sentences = [part.strip() for part in _SENTENCE_BREAK.split(value)]
    sentences = [s for s in sentences if s]
    if len(sentences) <= 2:
        return value
    return ". ".join(sentences[:2]) + "."


def fallback_activity(app_name: Optional[str], screenshot_available: bool) -> str:
    """Deterministic summary used whenever inference is skipped or fails."""
    active_app = app_name or "the active application"
    if screenshot_available:
        return f"Could not reliably infer a two-sentence summary for {active_app} from the screenshot and metadata."
    return f"Could not reliably infer a two-sentence summary for {active_app} from the visible metadata."


class ActivityInferenceClient:
    """
    Infers the user's current activity through a chat-completion endpoint.

    Tries the vision model with the screenshot first, then the text model
    without it. Each model gets exactly one request per cycle.

    Attributes:
        api_key: Bearer token, None when no credential is configured.
        base_url: API root; requests go to {base_url}/chat/completions.
        vision_model: Model that accepts image input.
        text_model: Text-only model.
        temperature: Sampling temperature.
        timeout: HTTP timeout in seconds per request.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = InferenceConfig.base_url,
        vision_model: str = InferenceConfig.vision_model,
        text_model: str = InferenceConfig.text_model,
        temperature: float = 0.2,
        timeout: float = 20.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = (api_key or "").strip() or None
        self.base_url = base_url.rstrip("/")
        self.vision_model = vision_model
        self.text_model = text_model
        self.temperature = temperature
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(
        cls,
        config: InferenceConfig,
        api_key: Optional[str],
        session: Optional[requests.Session] = None,
    ) -> "ActivityInferenceClient":
        return cls(
            api_key=api_key if config.enabled else None,
            base_url=config.base_url,
            vision_model=config.vision_model,
            text_model=config.text_model,
            temperature=config.temperature,
            timeout=config.timeout_seconds,
            session=session,
        )

    def close(self) -> None:
        self.session.close()

    def plan_attempts(self, screenshot_available: bool) -> tuple[ModelAttempt, ...]:
        if screenshot_available:
            return (
                ModelAttempt(self.vision_model, include_screenshot=True),
                ModelAttempt(self.text_model, include_screenshot=False),
            )
        return (ModelAttempt(self.text_model, include_screenshot=False),)

    def infer_activity(
        self,
        metadata: ActivityMetadata,
        screenshot_data_uri: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """
        Describe the user's current activity in at most two sentences.

        Args:
            metadata: Foreground app and window details.
            screenshot_data_uri: Encoded screenshot, if one was captured.
            cancel_event: When set, remaining attempts are skipped.

        Returns:
            The first successful model answer (normalized), or the fallback.
        """
        screenshot_available = screenshot_data_uri is not None
        fallback = fallback_activity(metadata.app_name, screenshot_available)

        try:
            self._require_credential()
        except NoCredential as e:
            logger.info(f"Skipping activity inference: {e.reason}")
            return fallback

        for attempt in self.plan_attempts(screenshot_available):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Activity inference cancelled")
                return fallback
            image = screenshot_data_uri if attempt.include_screenshot else None
            try:
                return self.request_activity(metadata, attempt.model, image)
            except InferenceError as e:
                logger.warning(f"Inference with {attempt.model} failed: {e.reason}")

        logger.info("All inference attempts failed, using fallback summary")
        return fallback

    def _require_credential(self) -> str:
        if not self.api_key:
            raise NoCredential("No inference API key configured")
        return self.api_key

    def build_payload(
        self,
        metadata: ActivityMetadata,
        model: str,
        screenshot_data_uri: Optional[str] = None,
    ) -> dict:
        metadata_block = metadata.format()
        if screenshot_data_uri:
            user_content = [
                {"type": "text", "text": VISION_INSTRUCTION},
                {"type": "text", "text": metadata_block},
                {"type": "image_url", "image_url": {"url": screenshot_data_uri}},
            ]
        else:
            user_content = f"{TEXT_ONLY_INSTRUCTION}\n\n{metadata_block}"

        return {
            "model": model,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_content},
            ],
        }

    def request_activity(
        self,
        metadata: ActivityMetadata,
        model: str,
        screenshot_data_uri: Optional[str] = None,
    ) -> str:
        """
        Issue one chat-completion request.

        Returns:
            The normalized model answer.

        Raises:
            NetworkFailure: On transport errors, timeouts or non-200 status.
            InvalidResponse: On undecodable JSON or missing/empty content.
        """
        url = f"{self.base_url}/chat/completions"
        payload = self.build_payload(metadata, model, screenshot_data_uri)
        headers = {"Authorization": f"Bearer {self._require_credential()}"}

        start_time = time.time()
        try:
            response = self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise NetworkFailure(f"{model} timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise NetworkFailure(f"Cannot reach {self.base_url}: {e}") from e

        inference_time = time.time() - start_time
        if response.status_code != 200:
            raise NetworkFailure(
                f"{model} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            result = response.json()
        except ValueError as e:
            raise InvalidResponse(f"{model} returned undecodable JSON") from e

        try:
            content = result["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise InvalidResponse(f"{model} response has no message content") from e

        if not isinstance(content, str) or not content.strip():
            raise InvalidResponse(f"{model} returned empty content")

        logger.info(f"Activity inferred by {model} in {inference_time:.2f}s")
        return normalize_activity_summary(content.strip())
