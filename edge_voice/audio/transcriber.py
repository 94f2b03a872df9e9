"""ASR utilities powered by faster-whisper."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock

import numpy as np
from faster_whisper import WhisperModel


@dataclass(slots=True)
class WhisperConfig:
    """Configuration for the faster-whisper engine.

    ``model`` is either a size name ("base.en") or a local model directory.
    """

    model: str = "base.en"
    device: str = "cpu"
    compute_type: str = "int8"
    language: str | None = "en"
    download_root: str | None = None


class FasterWhisperEngine:
    """Thin wrapper around WhisperModel, loaded on first use."""

    def __init__(self, config: WhisperConfig) -> None:
        self.config = config
        self._model: WhisperModel | None = None
        self._lock = Lock()

    @property
    def model(self) -> WhisperModel:
        with self._lock:
            if self._model is None:
                self._model = WhisperModel(
                    self.config.model,
                    device=self.config.device,
                    compute_type=self.config.compute_type,
                    download_root=self.config.download_root,
                )
            return self._model

    def transcribe(self, audio: np.ndarray) -> str:
        """Transcribe mono float32 samples at 16 kHz."""
        if audio.size == 0:
            return ""
        segments, _ = self.model.transcribe(audio, language=self.config.language, vad_filter=False)
        return " ".join(segment.text.strip() for segment in segments).strip()
