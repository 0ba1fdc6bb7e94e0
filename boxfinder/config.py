"""Client configuration.

Credentials and settings are resolved in this order:

1. ``<data dir>/credentials.json``
2. Environment variables (``BOXFINDER_BACKEND_URL``, ``BOXFINDER_AUTH_TOKEN``,
   ``BOXFINDER_LOG_LEVEL``), which override the file
3. ``<data dir>/config.json`` (legacy) for anything still missing
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from boxfinder.errors import ConfigurationError
from boxfinder.utils import get_boxfinder_home

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_PROBE_TIMEOUT = 5.0
DEFAULT_PROBE_INTERVAL = 15.0
DEFAULT_MAX_RETRIES = 3

LOCAL_HOSTS = {"localhost", "127.0.0.1"}


def validate_backend_url(url: Optional[str]) -> Optional[str]:
    """Return ``url`` if the bearer token may be sent to it, else ``None``.

    HTTPS is accepted for any host. Plain HTTP only for a local dev server.
    """
    if not url:
        return None
    parsed = urlparse(url)
    if not parsed.hostname:
        logger.warning(f"Ignoring backend_url without a host: {url}")
        return None
    if parsed.scheme == "https":
        return url
    if parsed.scheme == "http" and parsed.hostname in LOCAL_HOSTS:
        return url
    logger.warning(f"Ignoring backend_url {url}: use https (http is only allowed for localhost)")
    return None


@dataclass
class ClientConfig:
    """Settings for one boxfinder client instance."""

    backend_url: Optional[str] = None
    auth_token: Optional[str] = None
    data_dir: Optional[Path] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    probe_interval: float = DEFAULT_PROBE_INTERVAL
    max_retries: int = DEFAULT_MAX_RETRIES
    log_level: str = "INFO"

    def __post_init__(self):
        if self.data_dir is None:
            self.data_dir = get_boxfinder_home()
        else:
            self.data_dir = Path(self.data_dir)
        if self.backend_url:
            self.backend_url = self.backend_url.rstrip("/")

    @property
    def db_path(self) -> Path:
        return self.data_dir / "boxfinder.db"

    @property
    def has_backend(self) -> bool:
        return bool(self.backend_url)

    def require_backend(self) -> str:
        """Return the backend URL or raise ConfigurationError."""
        if not self.backend_url:
            raise ConfigurationError(
                "No backend URL configured. Set BOXFINDER_BACKEND_URL or add "
                "backend_url to credentials.json."
            )
        return self.backend_url


def _read_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def load_config(data_dir: Optional[Path] = None) -> ClientConfig:
    """Build a ClientConfig from credential files and the environment."""
    home = Path(data_dir) if data_dir is not None else get_boxfinder_home()

    creds = _read_json(home / "credentials.json")
    backend_url = creds.get("backend_url")
    # Accept both "auth_token" (preferred) and "token" (legacy)
    auth_token = creds.get("auth_token") or creds.get("token")
    log_level = creds.get("log_level")

    backend_url = os.environ.get("BOXFINDER_BACKEND_URL") or backend_url
    auth_token = os.environ.get("BOXFINDER_AUTH_TOKEN") or auth_token
    log_level = os.environ.get("BOXFINDER_LOG_LEVEL") or log_level

    legacy = {}
    if not backend_url or not auth_token:
        legacy = _read_json(home / "config.json")
        backend_url = backend_url or legacy.get("backend_url")
        auth_token = auth_token or legacy.get("auth_token")

    if backend_url:
        backend_url = validate_backend_url(backend_url)

    settings = {**legacy, **creds}
    config = ClientConfig(
        backend_url=backend_url,
        auth_token=auth_token,
        data_dir=home,
        log_level=(log_level or "INFO").upper(),
    )
    for key in ("request_timeout", "probe_timeout", "probe_interval"):
        if key in settings:
            try:
                setattr(config, key, float(settings[key]))
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid {key}: {settings[key]!r}")
    if "max_retries" in settings:
        try:
            config.max_retries = max(1, int(settings["max_retries"]))
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid max_retries: {settings['max_retries']!r}")
    return config
