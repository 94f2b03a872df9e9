"""EDGE voice client package."""

from __future__ import annotations

from typing import Any

__all__ = ["run"]


def run(*args: Any, **kwargs: Any) -> Any:
    """Start the console client (imports the audio stack lazily)."""
    from .app import main

    return main(*args, **kwargs)
