"""Playback of synthesized speech."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

import sounddevice as sd

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PlaybackConfig:
    """Playback configuration."""

    sample_rate: int = 22_050
    channels: int = 1
    device_name: str | None = None


class SpeechPlayback:
    """Play int16 PCM and report when the queued audio has been drained.

    ``on_drained`` runs on the audio thread; callers marshal it themselves.
    """

    def __init__(self, config: PlaybackConfig | None = None) -> None:
        self.config = config or PlaybackConfig()
        self._buffer = deque[bytes]()
        self._lock = threading.RLock()
        self._stream: sd.RawOutputStream | None = None
        self._on_drained: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def active(self) -> bool:
        with self._lock:
            return bool(self._buffer)

    def play(
        self,
        pcm_data: bytes,
        sample_rate: int | None = None,
        on_drained: Optional[Callable[[], None]] = None,
    ) -> None:
        """Replace anything queued with ``pcm_data``."""
        if sample_rate and sample_rate != self.config.sample_rate:
            self.stop()
            self.config.sample_rate = sample_rate
        with self._lock:
            self._buffer.clear()
            self._on_drained = on_drained
            if not pcm_data:
                self._drained()
                return
            self._buffer.append(pcm_data)
            self._ensure_stream()

    def stop(self) -> None:
        """Stop playback, clear the buffer and forget the drain callback."""
        with self._lock:
            self._buffer.clear()
            self._on_drained = None
            stream, self._stream = self._stream, None
        # Outside the lock: abort() waits for the audio callback to return.
        if stream is not None:
            stream.abort()
            stream.close()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _ensure_stream(self) -> None:
        if self._stream is not None:
            if not self._stream.active:
                self._stream.start()
            return
        self._stream = sd.RawOutputStream(
            samplerate=self.config.sample_rate,
            channels=self.config.channels,
            dtype="int16",
            callback=self._on_write,
            device=self.config.device_name,
        )
        self._stream.start()

    def _drained(self) -> None:
        callback, self._on_drained = self._on_drained, None
        if callback is not None:
            callback()

    def _on_write(self, outdata: bytearray, frames: int, time, status) -> None:  # noqa: ANN001
        if status:  # pragma: no cover
            LOGGER.debug("Playback status: %s", status)
        with self._lock:
            if not self._buffer:
                outdata[:] = b"\x00" * len(outdata)
                if self._on_drained is not None:
                    self._drained()
                return
            chunk = self._buffer.popleft()
            if len(chunk) >= len(outdata):
                outdata[:] = chunk[: len(outdata)]
                remainder = chunk[len(outdata) :]
                if remainder:
                    self._buffer.appendleft(remainder)
            else:
                outdata[: len(chunk)] = chunk
                outdata[len(chunk) :] = b"\x00" * (len(outdata) - len(chunk))
