"""Microphone capture used by the barge-in monitor."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Iterable

import numpy as np
import sounddevice as sd

from .capabilities import CapturePermissionError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CaptureConfig:
    """Microphone capture configuration."""

    sample_rate: int = 16_000
    channels: int = 1
    block_duration_ms: int = 20
    device_name: str | None = None


class MicrophoneCapture:
    """Keep the most recent block of normalized float32 samples."""

    def __init__(self, config: CaptureConfig | None = None) -> None:
        self.config = config or CaptureConfig()
        self._stream: sd.InputStream | None = None
        self._latest = np.zeros(0, dtype=np.float32)
        self._lock = Lock()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @staticmethod
    def available_devices() -> Iterable[str]:
        """List available input devices."""
        return [
            device["name"]
            for device in sd.query_devices()
            if int(device.get("max_input_channels", 0)) > 0
        ]

    def open(self) -> None:
        """Open the input stream; raise ``CapturePermissionError`` when refused."""
        with self._lock:
            if self._stream is not None:
                return
            blocksize = int(self.config.sample_rate * self.config.block_duration_ms / 1000)
            try:
                stream = sd.InputStream(
                    samplerate=self.config.sample_rate,
                    channels=self.config.channels,
                    dtype="float32",
                    blocksize=blocksize,
                    callback=self._on_block,
                    device=self.config.device_name,
                )
                stream.start()
            except sd.PortAudioError as exc:
                raise CapturePermissionError(f"cannot open microphone: {exc}") from exc
            self._stream = stream
            LOGGER.debug("Microphone capture started.")

    def read(self) -> np.ndarray:
        """Return a copy of the latest block (empty before the first one)."""
        with self._lock:
            return self._latest.copy()

    def close(self) -> None:
        with self._lock:
            if self._stream is None:
                return
            stream, self._stream = self._stream, None
            self._latest = np.zeros(0, dtype=np.float32)
        stream.stop()
        stream.close()
        LOGGER.debug("Microphone capture stopped.")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _on_block(self, indata: np.ndarray, frames: int, time, status) -> None:  # noqa: ANN001
        if status:  # pragma: no cover
            LOGGER.debug("Microphone status: %s", status)
        block = np.array(indata[:, 0], dtype=np.float32)
        with self._lock:
            self._latest = block
