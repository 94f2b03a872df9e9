"""Voice activity detection: speech endpointing and barge-in monitoring."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
import webrtcvad

from ..runtime.timers import Scheduler, TimerHandle
from .capabilities import AudioCapture

LOGGER = logging.getLogger(__name__)

_VALID_SAMPLE_RATES = (8000, 16_000, 32_000, 48_000)
_VALID_FRAME_DURATIONS_MS = (10, 20, 30)


@dataclass(slots=True)
class VADConfig:
    """WebRTC VAD configuration."""

    aggressiveness: int = 2  # 0 (sensitive) to 3 (strict)


class VoiceActivityDetector:
    """Frame classifier used by the recognizer to find utterance boundaries."""

    def __init__(self, config: VADConfig | None = None) -> None:
        self.config = config or VADConfig()
        self.config.aggressiveness = max(0, min(3, self.config.aggressiveness))
        self._vad = webrtcvad.Vad(self.config.aggressiveness)

    def is_speech(self, frame: bytes, sample_rate: int) -> bool:
        """Return True when the int16 mono frame contains speech."""
        if sample_rate not in _VALID_SAMPLE_RATES or not frame:
            return False
        return self._vad.is_speech(self._fit_frame(frame, sample_rate), sample_rate)

    @staticmethod
    def _fit_frame(frame: bytes, sample_rate: int) -> bytes:
        """Pad or cut the frame to the nearest duration webrtcvad accepts."""
        samples = len(frame) // 2
        sizes = [sample_rate * ms // 1000 for ms in _VALID_FRAME_DURATIONS_MS]
        target = min(sizes, key=lambda size: abs(size - samples)) * 2
        if len(frame) >= target:
            return frame[:target]
        return frame + bytes(target - len(frame))


class VoiceActivityMonitor:
    """Sample the microphone while the assistant speaks and report barge-in.

    The capture stream is acquired once by :meth:`open` and sampled only
    between :meth:`resume` and :meth:`pause`. A tick whose RMS level exceeds
    ``threshold`` while ``is_speaking()`` holds raises ``on_barge_in(level)``,
    at most once per ``cooldown`` seconds.
    """

    def __init__(
        self,
        capture: AudioCapture,
        scheduler: Scheduler,
        *,
        is_speaking: Callable[[], bool],
        threshold: float = 0.06,
        cooldown: float = 0.6,
        sample_hz: float = 60.0,
    ) -> None:
        if sample_hz <= 0:
            raise ValueError("sample_hz must be positive")
        self._capture = capture
        self._scheduler = scheduler
        self.is_speaking = is_speaking
        self.threshold = threshold
        self.cooldown = cooldown
        self.interval = 1.0 / sample_hz

        self.on_barge_in: Optional[Callable[[float], None]] = None
        self.level = 0.0
        self._sampling = False
        self._tick_handle: TimerHandle | None = None
        self._last_trigger: float | None = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def is_open(self) -> bool:
        return self._capture.is_open

    @property
    def sampling(self) -> bool:
        return self._sampling

    def open(self) -> None:
        """Acquire the capture stream. Raises ``CapturePermissionError`` on denial."""
        if self._capture.is_open:
            return
        self._capture.open()
        LOGGER.debug("Barge-in capture opened")

    def resume(self) -> None:
        """Start sampling at the configured rate."""
        if self._sampling:
            return
        if not self._capture.is_open:
            LOGGER.debug("Barge-in monitor not resumed: capture is closed")
            return
        self._sampling = True
        self._schedule_tick()

    def pause(self) -> None:
        """Stop sampling but keep the stream."""
        self._sampling = False
        self.level = 0.0
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def close(self) -> None:
        """Stop sampling and release the stream."""
        self.pause()
        if self._capture.is_open:
            self._capture.close()
            LOGGER.debug("Barge-in capture released")

    def sample(self) -> bool:
        """Measure the latest buffer once; return True if barge-in fired."""
        self.level = self.rms(self._capture.read())
        if self.level <= self.threshold or not self.is_speaking():
            return False
        now = self._scheduler.now()
        if self._last_trigger is not None and now - self._last_trigger < self.cooldown:
            return False
        self._last_trigger = now
        LOGGER.info("Barge-in detected (rms=%.3f)", self.level)
        if self.on_barge_in:
            self.on_barge_in(self.level)
        return True

    @staticmethod
    def rms(samples: np.ndarray) -> float:
        """Root mean square of normalized samples in [-1, 1]."""
        data = np.asarray(samples, dtype=np.float32)
        if data.size == 0:
            return 0.0
        return float(np.sqrt(np.mean(np.square(data))))

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _schedule_tick(self) -> None:
        self._tick_handle = self._scheduler.call_later(self.interval, self._tick)

    def _tick(self) -> None:
        self._tick_handle = None
        if not self._sampling:
            return
        self.sample()
        if self._sampling:
            self._schedule_tick()
