"""Continuous recognition built from sounddevice, webrtcvad and faster-whisper."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
import sounddevice as sd

from .capabilities import RecognitionError
from .transcriber import FasterWhisperEngine
from .vad import VoiceActivityDetector

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class EndpointConfig:
    """Utterance endpointing on 16 kHz int16 mono frames."""

    sample_rate: int = 16_000
    frame_duration_ms: int = 30
    silence_ms: int = 700
    min_speech_ms: int = 240
    max_utterance_s: float = 15.0
    device_name: str | None = None


class WhisperRecognizer:
    """Recognition capability emitting one finalized transcript per utterance.

    Audio frames arrive on the PortAudio thread; every handler is invoked on
    the event loop that called :meth:`start`.
    """

    def __init__(
        self,
        engine: FasterWhisperEngine,
        vad: VoiceActivityDetector,
        config: EndpointConfig | None = None,
    ) -> None:
        self.engine = engine
        self.vad = vad
        self.config = config or EndpointConfig()
        self.on_start: Optional[Callable[[], None]] = None
        self.on_result: Optional[Callable[[str, str], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None
        self.on_end: Optional[Callable[[], None]] = None

        self._loop: asyncio.AbstractEventLoop | None = None
        self._stream: sd.RawInputStream | None = None
        self._frames: list[bytes] = []
        self._speech_frames = 0
        self._silent_frames = 0
        self._pending: set[asyncio.Future[str]] = set()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def start(self) -> None:
        if self._stream is not None:
            raise RecognitionError("already-started")
        self._loop = asyncio.get_running_loop()
        frame_size = self.config.sample_rate * self.config.frame_duration_ms // 1000
        try:
            stream = sd.RawInputStream(
                samplerate=self.config.sample_rate,
                channels=1,
                dtype="int16",
                blocksize=frame_size,
                callback=self._on_frame,
                device=self.config.device_name,
            )
            stream.start()
        except sd.PortAudioError as exc:
            LOGGER.warning("Cannot open microphone for recognition: %s", exc)
            raise RecognitionError("not-allowed", str(exc)) from exc
        self._stream = stream
        self._reset_utterance()
        self._loop.call_soon(self._emit, self.on_start)

    def stop(self) -> None:
        """Stop capturing; an utterance in progress is still transcribed."""
        if self._close_stream():
            self._flush()
            self._finish()

    def abort(self) -> None:
        """Stop capturing and drop pending audio and transcriptions."""
        if not self._close_stream():
            return
        self._reset_utterance()
        for future in self._pending:
            future.cancel()
        self._pending.clear()
        self._emit_error("aborted")
        self._finish()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _close_stream(self) -> bool:
        stream, self._stream = self._stream, None
        if stream is None:
            return False
        stream.stop()
        stream.close()
        return True

    def _finish(self) -> None:
        if self._loop is not None:
            self._loop.call_soon(self._emit, self.on_end)

    def _reset_utterance(self) -> None:
        self._frames = []
        self._speech_frames = 0
        self._silent_frames = 0

    def _on_frame(self, indata: bytes, frames: int, time, status) -> None:  # noqa: ANN001
        if status:  # pragma: no cover
            LOGGER.debug("Recognition input status: %s", status)
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._accept_frame, bytes(indata))

    def _accept_frame(self, frame: bytes) -> None:
        if self._stream is None:
            return
        frame_ms = self.config.frame_duration_ms
        if self.vad.is_speech(frame, self.config.sample_rate):
            self._frames.append(frame)
            self._speech_frames += 1
            self._silent_frames = 0
            if self._speech_frames == 1:
                self._emit_result("", "…")
        elif self._frames:
            self._frames.append(frame)
            self._silent_frames += 1
        else:
            return
        duration_s = len(self._frames) * frame_ms / 1000
        if self._silent_frames * frame_ms >= self.config.silence_ms or duration_s >= self.config.max_utterance_s:
            self._flush()

    def _flush(self) -> None:
        frames, speech_frames = self._frames, self._speech_frames
        self._reset_utterance()
        if speech_frames * self.config.frame_duration_ms < self.config.min_speech_ms:
            return
        pcm = np.frombuffer(b"".join(frames), dtype=np.int16).astype(np.float32) / 32768.0
        assert self._loop is not None
        future = self._loop.run_in_executor(None, self.engine.transcribe, pcm)
        self._pending.add(future)
        future.add_done_callback(self._on_transcribed)

    def _on_transcribed(self, future: Future[str] | asyncio.Future[str]) -> None:
        self._pending.discard(future)  # type: ignore[arg-type]
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            LOGGER.warning("Transcription failed: %s", exc)
            self._emit_error("audio-capture")
            return
        text = future.result().strip()
        if text:
            self._emit_result(text, "")

    def _emit(self, handler: Optional[Callable[[], None]]) -> None:
        if handler is not None:
            handler()

    def _emit_result(self, final_text: str, interim_text: str) -> None:
        if self.on_result is not None:
            self.on_result(final_text, interim_text)

    def _emit_error(self, kind: str) -> None:
        if self.on_error is not None:
            self.on_error(kind)
