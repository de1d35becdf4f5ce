"""Adaptive screenshot encoding under a transport-size budget.

A captured window or screen is JPEG-encoded and base64-wrapped into a data
URI for the chat-completion request. The payload has a hard size limit, so
encoding walks a fixed ladder of (max dimension, quality) rungs and stops at
the first rung whose base64 payload fits:

    native @ 0.6
    2048, 1600, 1280, 1024 @ 0.6
    768, 640, 480, 360, 320 @ 0.45
    320, 240, 180 @ 0.35
    240, 160, 120 @ 0.3

Every rung is smaller and/or more compressed than the previous one, so the
first fit is also the best-quality fit. Resizing keeps the aspect ratio and
never enlarges.

Example:
    >>> encoder = ImageEncoder.from_config(config.capture)
    >>> result = encoder.encode(image)
    >>> result.data_uri[:23]
    'data:image/jpeg;base64,'
"""

import base64
import io
import logging
from dataclasses import dataclass
from typing import Optional, Union

from PIL import Image

from .config import CaptureConfig
from .errors import EncodingBudgetExceeded

logger = logging.getLogger(__name__)

DEFAULT_MAX_DATA_URI_LENGTH = 3_900_000
SIZE_LIMIT_REASON = "Could not capture screenshot within size limits"

_FORMATS = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
}


@dataclass(frozen=True)
class EncodingRung:
    """One encoding attempt; max_dimension None means native resolution."""
    max_dimension: Optional[int]
    quality: float


@dataclass(frozen=True)
class Encoded:
    """A screenshot that fits the transport budget."""
    data_uri: str
    mime_type: str


@dataclass(frozen=True)
class Unavailable:
    """No screenshot, with the reason why."""
    reason: str


ScreenshotResult = Union[Encoded, Unavailable]


def build_ladder(native_quality: float, rungs: list[list[float]]) -> tuple[EncodingRung, ...]:
    """Native-resolution rung followed by the configured downscale rungs."""
    ladder = [EncodingRung(None, float(native_quality))]
    for max_dimension, quality in rungs:
        ladder.append(EncodingRung(int(max_dimension), float(quality)))
    return tuple(ladder)


DEFAULT_LADDER = build_ladder(0.6, CaptureConfig().ladder)


def resize_to_fit(img: Image.Image, max_dimension: Optional[int]) -> Image.Image:
    """Downscale so the longest side is at most max_dimension; never upscale."""
    if max_dimension is None:
        return img
    if img.width <= max_dimension and img.height <= max_dimension:
        return img

    longest = max(img.width, img.height)
    new_width = max(1, round(img.width * max_dimension / longest))
    new_height = max(1, round(img.height * max_dimension / longest))
    return img.resize((new_width, new_height), Image.Resampling.LANCZOS)


class ImageEncoder:
    """Encodes images into data URIs no larger than a base64 budget.

    Attributes:
        max_payload_length (int): Largest base64 payload accepted
        ladder (tuple[EncodingRung, ...]): Rungs tried in order
        mime_type (str): Output image type
    """

    def __init__(
        self,
        max_payload_length: int = DEFAULT_MAX_DATA_URI_LENGTH,
        ladder: tuple[EncodingRung, ...] = DEFAULT_LADDER,
        mime_type: str = "image/jpeg",
    ):
        if mime_type not in _FORMATS:
            raise ValueError(f"Unsupported screenshot type: {mime_type}")
        self.max_payload_length = max_payload_length
        self.ladder = tuple(ladder)
        self.mime_type = mime_type

    @classmethod
    def from_config(cls, config: CaptureConfig) -> "ImageEncoder":
        return cls(
            max_payload_length=config.max_data_uri_length,
            ladder=build_ladder(config.native_quality, config.ladder),
            mime_type=config.mime_type,
        )

    def encode(self, img: Image.Image) -> ScreenshotResult:
        """Encode img with the first ladder rung that fits the budget.

        Returns:
            Encoded on the first fitting rung, otherwise Unavailable with the
            size-limit reason
        """
        try:
            return self.encode_or_raise(img)
        except EncodingBudgetExceeded as e:
            return Unavailable(e.reason)

    def encode_or_raise(self, img: Image.Image) -> Encoded:
        """
        Raises:
            EncodingBudgetExceeded: If every rung's payload is over budget
        """
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")

        for rung in self.ladder:
            payload = self._encode_rung(img, rung)
            if payload is not None:
                logger.info(
                    f"Encoded screenshot at {rung.max_dimension or 'native'}px, "
                    f"quality {rung.quality} ({len(payload)} chars)"
                )
                return Encoded(f"data:{self.mime_type};base64,{payload}", self.mime_type)

        logger.warning(f"Every encoding rung exceeded {self.max_payload_length} chars")
        raise EncodingBudgetExceeded(SIZE_LIMIT_REASON)

    def _encode_rung(self, img: Image.Image, rung: EncodingRung) -> Optional[str]:
        """Base64 payload for one rung, or None when it is over budget."""
        resized = resize_to_fit(img, rung.max_dimension)
        payload = base64.b64encode(self._compress(resized, rung.quality)).decode("ascii")
        if len(payload) > self.max_payload_length:
            logger.debug(
                f"Rung {rung.max_dimension or 'native'}@{rung.quality}: "
                f"{len(payload)} chars over budget"
            )
            return None
        return payload

    def _compress(self, img: Image.Image, quality: float) -> bytes:
        buffer = io.BytesIO()
        img.save(buffer, format=_FORMATS[self.mime_type], quality=round(quality * 100))
        return buffer.getvalue()
