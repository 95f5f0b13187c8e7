"""Config file and project descriptor discovery.

Walk-up finder locates ``.boxctl.yaml``, similar to how git finds ``.git/``.
Host settings live in ``<state_dir>/config.toml``; ``BOXCTL_CONFIG`` and the
``--config`` CLI flag override the location.
"""

from __future__ import annotations

import os
from pathlib import Path

CONFIG_FILENAME = "config.toml"
CONFIG_ENV_VAR = "BOXCTL_CONFIG"
STATE_DIR_ENV_VAR = "BOXCTL_STATE_DIR"
DEFAULT_STATE_DIRNAME = ".boxctl"

DESCRIPTOR_FILENAME = ".boxctl.yaml"
LOCAL_DESCRIPTOR_FILENAME = ".boxctl.local.yaml"


def default_state_dir() -> Path:
    """``$BOXCTL_STATE_DIR`` or ``~/.boxctl``."""
    env_dir = os.environ.get(STATE_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir)
    return Path.home() / DEFAULT_STATE_DIRNAME


def find_config(state_dir: Path | None = None) -> Path | None:
    """Locate the host settings file.

    Checks ``BOXCTL_CONFIG`` first, then ``<state_dir>/config.toml``.
    Returns None if no file exists.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        p = Path(env_path)
        if p.is_file():
            return p
        return None

    candidate = (state_dir or default_state_dir()) / CONFIG_FILENAME
    if candidate.is_file():
        return candidate
    return None


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from *start* (default: cwd) looking for ``.boxctl.yaml``.

    Returns the directory containing the descriptor, or None if not found.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        if (current / DESCRIPTOR_FILENAME).is_file():
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent
    return None
