"""Logging setup for boxfinder.

Application logs go to ``<data dir>/logs/local-<date>.log``. Sync events
(enqueue, drain, connectivity transitions) additionally go to a plain
append-only ``sync-events-<date>.log`` so they can be grepped after the fact.
"""

import logging
from datetime import datetime
from pathlib import Path

from boxfinder.utils import get_boxfinder_home

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_log_dir() -> Path:
    log_dir = get_boxfinder_home() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def setup_boxfinder_logging(level: str = "INFO") -> logging.Logger:
    """Configure the ``boxfinder`` logger.

    Args:
        level: Level name (case-insensitive). Unknown names fall back to INFO.

    Returns:
        The configured ``boxfinder`` logger. Repeat calls reuse existing handlers.
    """
    log_level = getattr(logging, str(level).upper(), None)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logger = logging.getLogger("boxfinder")
    logger.setLevel(log_level)

    if logger.handlers:
        return logger

    date_str = datetime.now().strftime("%Y-%m-%d")
    file_handler = logging.FileHandler(get_log_dir() / f"local-{date_str}.log")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)

    if log_level == logging.DEBUG:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console)

    return logger


def log_sync_event(event: str, details: str = "") -> None:
    """Append one line to the sync event log."""
    date_str = datetime.now().strftime("%Y-%m-%d")
    timestamp = datetime.now().isoformat(timespec="seconds")
    try:
        path = get_log_dir() / f"sync-events-{date_str}.log"
        with open(path, "a") as f:
            f.write(f"{timestamp} | {event} | {details}\n")
    except OSError as e:
        logging.getLogger(__name__).warning(f"Could not write sync event log: {e}")


def log_enqueue(kind: str, entity: str, entity_id: str, pending: int) -> None:
    log_sync_event("enqueue", f"kind={kind}, entity={entity}, id={entity_id}, pending={pending}")


def log_drain(success: int, failed: int, pending: int) -> None:
    log_sync_event("drain", f"success={success}, failed={failed}, pending={pending}")


def log_connectivity(is_connected: bool) -> None:
    log_sync_event("connectivity", "online" if is_connected else "offline")
