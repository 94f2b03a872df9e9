"""Filesystem helpers for the voice client."""

from __future__ import annotations

import os
from pathlib import Path


def client_home() -> Path:
    """Return the folder holding settings and voice models."""
    override = os.environ.get("EDGE_VOICE_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".edge_voice"


def config_dir() -> Path:
    """Directory storing local configuration."""
    root = client_home() / "config"
    root.mkdir(parents=True, exist_ok=True)
    return root


def models_dir() -> Path:
    """Directory storing audio models (piper voices, whisper weights)."""
    root = client_home() / "models"
    root.mkdir(parents=True, exist_ok=True)
    return root
