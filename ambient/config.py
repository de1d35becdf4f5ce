"""Configuration management for the context capture pipeline.

This module provides a small hierarchical configuration system using YAML
files and Python dataclasses. A loaded ``Config`` is handed explicitly to
``ContextCollector``; nothing in the pipeline reads configuration from
module-level state.

Configuration Sections:
- capture: Screenshot transport budget and the encoding ladder
- inference: Chat-completion endpoint, models and request settings
- credentials: Where the inference API key is looked up

Example:
    >>> from ambient.config import ConfigManager
    >>> config_mgr = ConfigManager()
    >>> print(config_mgr.config.capture.max_data_uri_length)
    3900000
    >>> config_mgr.update('inference', 'timeout_seconds', 30)
"""

import dataclasses
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional
import yaml

logger = logging.getLogger(__name__)


def _default_ladder() -> list[list[float]]:
    """Downscale rungs tried after the native-resolution attempt."""
    rungs = []
    for size in [2048, 1600, 1280, 1024, 768, 640, 480, 360, 320]:
        rungs.append([size, 0.6 if size >= 1024 else 0.45])
    rungs.extend([size, 0.35] for size in [320, 240, 180])
    rungs.extend([size, 0.3] for size in [240, 160, 120])
    return rungs


@dataclass
class CaptureConfig:
    """Screenshot capture and encoding configuration.

    Attributes:
        enabled: Attempt a screenshot at all (default: True)
        max_data_uri_length: Largest base64 payload allowed on the wire (default: 3,900,000)
        mime_type: Encoded image type (default: image/jpeg)
        native_quality: Compression factor for the native-resolution attempt (default: 0.6)
        ladder: [max_dimension, quality] rungs tried in order once native is too large
    """
    enabled: bool = True
    max_data_uri_length: int = 3_900_000
    mime_type: str = "image/jpeg"
    native_quality: float = 0.6
    ladder: list[list[float]] = field(default_factory=_default_ladder)


@dataclass
class InferenceConfig:
    """Activity inference configuration.

    Attributes:
        enabled: Call the chat-completion endpoint when a key exists (default: True)
        base_url: OpenAI-compatible API root (default: Groq)
        vision_model: Model tried first when a screenshot is available
        text_model: Model used without a screenshot, and as the second attempt
        temperature: Sampling temperature sent with every request (default: 0.2)
        timeout_seconds: Per-request HTTP timeout (default: 20)
    """
    enabled: bool = True
    base_url: str = "https://api.groq.com/openai/v1"
    vision_model: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    text_model: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    temperature: float = 0.2
    timeout_seconds: float = 20.0


@dataclass
class CredentialsConfig:
    """Inference credential lookup.

    Attributes:
        env_var: Environment variable checked first (default: AMBIENT_API_KEY)
        account: Key name inside the settings file (default: groq_api_key)
        settings_path: Owner-only JSON settings file
    """
    env_var: str = "AMBIENT_API_KEY"
    account: str = "groq_api_key"
    settings_path: str = "~/.config/ambient-context/.settings"


@dataclass
class Config:
    """Top-level configuration container."""
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)


SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")


def _is_positive(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def _is_quality(value) -> bool:
    return _is_positive(value) and value <= 1


def _capture_problems(capture: CaptureConfig) -> list[str]:
    problems = []
    if not _is_positive(capture.max_data_uri_length):
        problems.append("max_data_uri_length must be positive")
    if capture.mime_type not in SUPPORTED_MIME_TYPES:
        problems.append(f"mime_type must be one of {', '.join(SUPPORTED_MIME_TYPES)}")
    if not _is_quality(capture.native_quality):
        problems.append("native_quality must be in (0, 1]")
    if not isinstance(capture.ladder, list):
        problems.append("ladder must be a list of [max_dimension, quality] rungs")
        return problems
    for rung in capture.ladder:
        try:
            max_dimension, quality = rung
        except (TypeError, ValueError):
            max_dimension, quality = None, None
        if not (_is_positive(max_dimension) and _is_quality(quality)):
            problems.append(f"ladder rung {rung!r} is not [max_dimension, quality]")
    return problems


def _inference_problems(inference: InferenceConfig) -> list[str]:
    problems = []
    if not isinstance(inference.base_url, str) or not inference.base_url.startswith(("http://", "https://")):
        problems.append("base_url must be an http(s) URL")
    if not _is_positive(inference.timeout_seconds):
        problems.append("timeout_seconds must be positive")
    if not isinstance(inference.temperature, (int, float)) or isinstance(inference.temperature, bool):
        problems.append("temperature must be a number")
    return problems


_SECTION_CHECKS = {
    'capture': _capture_problems,
    'inference': _inference_problems,
}


def section_problems(name: str, section) -> list[str]:
    """Validation problems for one config section; empty when usable."""
    check = _SECTION_CHECKS.get(name)
    return check(section) if check else []


class ConfigManager:
    """Loads, validates and saves the YAML configuration.

    Each section is merged onto its dataclass defaults. A section whose
    merged values fail validation is replaced by its defaults as a whole,
    so one bad ladder rung never leaves a half-applied capture section.

    Attributes:
        DEFAULT_PATH: Default configuration file location
        path: Configuration file path in use
        config: Current configuration object
    """

    DEFAULT_PATH = Path("~/.config/ambient-context/config.yaml").expanduser()

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path).expanduser() if path else self.DEFAULT_PATH
        self.config = self._load()

    def _load(self) -> Config:
        if not self.path.exists():
            logger.info(f"No config file at {self.path}, using defaults")
            return Config()

        try:
            with open(self.path) as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError, ValueError) as e:
            logger.warning(f"Failed to load config from {self.path}: {e}")
            return Config()

        if not isinstance(data, dict):
            logger.warning(f"Config file {self.path} is not a mapping, using defaults")
            return Config()

        logger.info(f"Loaded configuration from {self.path}")
        return self._dict_to_config(data)

    def _dict_to_config(self, data: dict) -> Config:
        """Merge each section of data onto its defaults, ignoring unknown keys."""
        sections = {}
        for section in dataclasses.fields(Config):
            default = section.default_factory()
            raw = data.get(section.name) or {}
            if not isinstance(raw, dict):
                logger.warning(f"Config section '{section.name}' is not a mapping, using defaults")
                raw = {}

            known_fields = {f.name for f in dataclasses.fields(default)}
            unknown = set(raw) - known_fields
            if unknown:
                logger.debug(f"Ignoring unknown {section.name} fields: {unknown}")

            merged = dataclasses.replace(default, **{k: v for k, v in raw.items() if k in known_fields})
            problems = section_problems(section.name, merged)
            if problems:
                logger.warning(f"Invalid {section.name} settings ({'; '.join(problems)}), using defaults")
                merged = default
            sections[section.name] = merged

        return Config(**sections)

    def save(self) -> None:
        """Write the current configuration to the YAML file.

        Raises:
            OSError: If file write fails
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                yaml.safe_dump(asdict(self.config), f, default_flow_style=False, sort_keys=False)
            logger.info(f"Saved configuration to {self.path}")
        except OSError as e:
            logger.error(f"Failed to save config to {self.path}: {e}")
            raise

    def update(self, section: str, key: str, value) -> bool:
        """Set one value, validate its section and save.

        Returns:
            True if the value changed and was saved; False if unchanged,
            unknown or rejected by validation

        Example:
            >>> config_mgr.update('inference', 'timeout_seconds', 30)
            True
            >>> config_mgr.update('capture', 'native_quality', 4)
            False
        """
        section_obj = getattr(self.config, section, None)
        if section_obj is None or not dataclasses.is_dataclass(section_obj):
            logger.warning(f"Invalid config section: {section}")
            return False
        if key not in {f.name for f in dataclasses.fields(section_obj)}:
            logger.warning(f"Invalid config key: {section}.{key}")
            return False

        old_value = getattr(section_obj, key)
        if old_value == value:
            return False

        candidate = dataclasses.replace(section_obj, **{key: value})
        problems = section_problems(section, candidate)
        if problems:
            logger.warning(f"Rejected {section}.{key}={value!r}: {'; '.join(problems)}")
            return False

        setattr(self.config, section, candidate)
        self.save()
        logger.info(f"Updated {section}.{key}: {old_value} -> {value}")
        return True

    def create_default_file(self) -> bool:
        """Write the default configuration if no file exists yet.

        Returns:
            True if a file was created, False if one was already present
        """
        if self.path.exists():
            logger.warning(f"Configuration file already exists at {self.path}")
            return False
        self.save()
        logger.info(f"Created default configuration at {self.path}")
        return True
