"""Inference credential lookup.

The API key is read from an environment variable first and then from an
owner-only JSON settings file. A missing key is a normal state: the pipeline
skips inference and uses its heuristic summary instead.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from .config import CredentialsConfig

logger = logging.getLogger(__name__)


class CredentialStore:
    """Reads and writes string secrets in a small JSON settings file.

    Attributes:
        path (Path): Settings file location
        env_var (str): Environment variable that overrides the file
        account (str): Default key name used by ``api_key()``

    Example:
        >>> store = CredentialStore.from_config(config.credentials)
        >>> store.save("gsk_...", "groq_api_key")
        >>> store.api_key()
        'gsk_...'
    """

    def __init__(self, path: str, env_var: Optional[str] = None, account: str = "groq_api_key"):
        self.path = Path(path).expanduser()
        self.env_var = env_var
        self.account = account

    @classmethod
    def from_config(cls, config: CredentialsConfig) -> "CredentialStore":
        return cls(config.settings_path, env_var=config.env_var, account=config.account)

    def api_key(self) -> Optional[str]:
        """Return the inference key, or None when none is configured."""
        if self.env_var:
            value = os.environ.get(self.env_var, "").strip()
            if value:
                return value
        return self.load(self.account)

    def load(self, account: str) -> Optional[str]:
        value = self._read().get(account)
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip()

    def save(self, value: str, account: str) -> None:
        settings = self._read()
        settings[account] = value
        self._write(settings)

    def delete(self, account: str) -> None:
        settings = self._read()
        if settings.pop(account, None) is not None:
            self._write(settings)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read credentials from {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed credentials file {self.path}")
            return {}
        return data

    def _write(self, settings: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        # 0600 from creation
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w') as f:
            json.dump(settings, f)
        os.replace(tmp_path, self.path)
        os.chmod(self.path, 0o600)
        logger.debug(f"Saved credentials to {self.path}")
