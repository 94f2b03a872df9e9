"""Host capabilities used by the turn-taking core.

The controller never probes the platform. It receives a :class:`Capabilities`
bundle at construction time: production code binds it to sounddevice,
faster-whisper and piper (see :func:`edge_voice.app.build_capabilities`),
tests bind it to deterministic fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

import numpy as np


PERMISSION_ERRORS = frozenset({"not-allowed", "service-not-allowed"})


class RecognitionError(RuntimeError):
    """Error raised or reported by a recognizer. ``kind`` names its class."""

    def __init__(self, kind: str, message: str | None = None) -> None:
        super().__init__(message or kind)
        self.kind = kind


class CapturePermissionError(RuntimeError):
    """The microphone stream could not be acquired."""


class RecognitionCapability(Protocol):
    """Continuous speech recognition (single language)."""

    on_start: Optional[Callable[[], None]]
    on_result: Optional[Callable[[str, str], None]]
    on_error: Optional[Callable[[str], None]]
    on_end: Optional[Callable[[], None]]

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def abort(self) -> None: ...


@dataclass(frozen=True, slots=True)
class Voice:
    """A synthesis voice offered by the platform."""

    name: str
    lang: str
    default: bool = False


@dataclass(slots=True, eq=False)
class Utterance:
    """Text queued for synthesis with its lifecycle handlers."""

    text: str
    rate: float = 1.0
    voice: Voice | None = None
    on_start: Optional[Callable[[], None]] = field(default=None, repr=False)
    on_end: Optional[Callable[[], None]] = field(default=None, repr=False)
    on_error: Optional[Callable[[str], None]] = field(default=None, repr=False)


class SynthesisCapability(Protocol):
    """Speech synthesis engine."""

    on_voices_changed: Optional[Callable[[], None]]

    def speak(self, utterance: Utterance) -> None: ...

    def cancel(self) -> None: ...

    def get_voices(self) -> list[Voice]: ...


class AudioCapture(Protocol):
    """Live microphone stream sampled by the barge-in monitor."""

    @property
    def is_open(self) -> bool: ...

    def open(self) -> None: ...

    def read(self) -> np.ndarray: ...

    def close(self) -> None: ...


@dataclass(slots=True)
class Capabilities:
    """The three platform capabilities injected into the controller."""

    recognition: RecognitionCapability
    synthesis: SynthesisCapability
    capture: AudioCapture
