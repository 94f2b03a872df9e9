"""Persistence helpers for voice client settings."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, TypeVar

from .paths import config_dir
from .settings import (
    AppSettings,
    BargeInSettings,
    ConversationSettings,
    RecognitionSettings,
    RetrySettings,
    ServerSettings,
    TurnSettings,
    VoiceSettings,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def _settings_path() -> Path:
    """Primary path for persisted settings."""
    return config_dir() / "voice_settings.json"


def _section(cls: type[T], data: Any) -> T:
    if not isinstance(data, dict):
        return cls()
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = set(data) - known
    if unknown:
        LOGGER.warning("Ignoring unknown %s keys: %s", cls.__name__, ", ".join(sorted(unknown)))
    return cls(**{key: value for key, value in data.items() if key in known})


def load_settings(path: Path | None = None) -> AppSettings:
    """Load settings from disk (defaults when missing or unreadable)."""
    path = path or _settings_path()
    if not path.exists():
        return AppSettings()

    raw_text = path.read_text(encoding="utf-8").lstrip("\ufeff")
    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError:
        LOGGER.warning("Ignoring malformed settings file %s", path)
        return AppSettings()
    if not isinstance(data, dict):
        LOGGER.warning("Ignoring malformed settings file %s", path)
        return AppSettings()

    return AppSettings(
        server=_section(ServerSettings, data.get("server")),
        voice=_section(VoiceSettings, data.get("voice")),
        conversation=_section(ConversationSettings, data.get("conversation")),
        recognition=_section(RecognitionSettings, data.get("recognition")),
        barge_in=_section(BargeInSettings, data.get("barge_in")),
        turns=_section(TurnSettings, data.get("turns")),
        retry=_section(RetrySettings, data.get("retry")),
    )


def save_settings(settings: AppSettings, path: Path | None = None) -> None:
    """Persist settings to disk."""
    path = path or _settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(settings), indent=2), encoding="utf-8")
