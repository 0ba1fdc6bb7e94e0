"""Filesystem helpers for boxfinder."""

import os
from pathlib import Path


def get_boxfinder_home() -> Path:
    """Return the boxfinder data directory.

    ``BOXFINDER_DATA_DIR`` wins when set; otherwise ``~/.boxfinder``.
    The directory is not created here.
    """
    env_dir = os.environ.get("BOXFINDER_DATA_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".boxfinder"
