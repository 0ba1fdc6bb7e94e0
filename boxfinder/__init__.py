"""
BoxFinder - offline-first sync client.

Entity cache, mutation queue and connectivity-driven replay for the
BoxFinder inventory API.
"""

from .app_state import AppContext
from .client import OfflineClient
from .config import ClientConfig, load_config

try:
    from importlib.metadata import version

    __version__ = version("boxfinder")
except Exception:
    __version__ = "0.0.0"

__all__ = ["AppContext", "ClientConfig", "OfflineClient", "load_config"]
