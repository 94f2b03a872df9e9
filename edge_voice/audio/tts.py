"""Text-to-speech using Piper voices found on disk."""

from __future__ import annotations

import asyncio
import json
import logging
import unicodedata
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Callable, Optional

from piper import PiperVoice, SynthesisConfig

from .capabilities import Utterance, Voice
from .playback import SpeechPlayback

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PiperConfig:
    """Piper model configuration."""

    model_path: Path
    config_path: Path
    speaker_id: int | None = None
    length_scale: float = 1.0
    noise_scale: float = 0.667


class PiperTTS:
    """Thin wrapper around PiperVoice."""

    def __init__(self, config: PiperConfig) -> None:
        self.config = config
        if not config.model_path.exists():
            raise FileNotFoundError(f"Piper model not found: {config.model_path}")
        if not config.config_path.exists():
            raise FileNotFoundError(f"Piper config not found: {config.config_path}")
        self._voice = PiperVoice.load(str(config.model_path), str(config.config_path))

    def synthesize(self, text: str, length_scale: float | None = None) -> tuple[bytes, int]:
        """Generate int16 PCM for the given text."""
        text = _sanitize_text(text)
        if not text.strip():
            return b"", 0
        syn_config = SynthesisConfig(
            speaker_id=self.config.speaker_id,
            length_scale=length_scale or self.config.length_scale,
            noise_scale=self.config.noise_scale,
        )
        pcm = bytearray()
        sample_rate = 0
        for chunk in self._voice.synthesize(text, syn_config=syn_config):
            sample_rate = chunk.sample_rate
            pcm.extend(chunk.audio_int16_bytes)
        return bytes(pcm), sample_rate


def _sanitize_text(text: str) -> str:
    """Drop characters Piper has no phonemes for (markup, emoji)."""
    normalized = unicodedata.normalize("NFC", text)
    cleaned = "".join(ch for ch in normalized if unicodedata.category(ch)[0] != "S" or ch in "%$€£")
    return cleaned.replace("*", "").replace("#", "")


def discover_voices(root: Path) -> list[Voice]:
    """List ``*.onnx`` voices that ship their ``.onnx.json`` config under ``root``."""
    voices: list[Voice] = []
    for model in sorted(root.rglob("*.onnx")):
        config = model.with_suffix(".onnx.json")
        if not config.exists():
            continue
        try:
            data = json.loads(config.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("Skipping voice %s: %s", model.name, exc)
            continue
        lang = (data.get("language") or {}).get("code") or data.get("espeak", {}).get("voice", "")
        voices.append(Voice(name=model.stem, lang=lang, default=not voices))
    return voices


class PiperSynthesizer:
    """Synthesis capability backed by Piper and :class:`SpeechPlayback`.

    Voices are discovered in the background on first :meth:`get_voices`;
    ``on_voices_changed`` fires once the list is known.
    """

    def __init__(self, voices_dir: Path, playback: SpeechPlayback | None = None) -> None:
        self.voices_dir = voices_dir
        self.playback = playback or SpeechPlayback()
        self.on_voices_changed: Optional[Callable[[], None]] = None

        self._voices: list[Voice] | None = None
        self._discovery: asyncio.Future[list[Voice]] | None = None
        self._engines: dict[str, PiperTTS] = {}
        self._engines_lock = Lock()
        self._current: Utterance | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def get_voices(self) -> list[Voice]:
        if self._voices is not None:
            return list(self._voices)
        if self._discovery is None:
            loop = self._get_loop()
            self._discovery = loop.run_in_executor(None, discover_voices, self.voices_dir)
            self._discovery.add_done_callback(self._on_discovered)
        return []

    def speak(self, utterance: Utterance) -> None:
        self.cancel()
        self._current = utterance
        loop = self._get_loop()
        future = loop.run_in_executor(None, self._render, utterance)
        future.add_done_callback(lambda fut: self._on_rendered(utterance, fut))

    def cancel(self) -> None:
        self._current = None
        self.playback.stop()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _on_discovered(self, future: asyncio.Future[list[Voice]]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            LOGGER.warning("Voice discovery failed: %s", exc)
            self._voices = []
        else:
            self._voices = future.result()
            LOGGER.info("Found %d Piper voice(s) in %s", len(self._voices), self.voices_dir)
        if self.on_voices_changed:
            self.on_voices_changed()

    def _engine_for(self, voice: Voice | None) -> PiperTTS:
        name = voice.name if voice else None
        with self._engines_lock:
            if name is None:
                voices = self._voices or discover_voices(self.voices_dir)
                if not voices:
                    raise FileNotFoundError(f"No Piper voice under {self.voices_dir}")
                name = voices[0].name
            engine = self._engines.get(name)
            if engine is None:
                model = next(self.voices_dir.rglob(f"{name}.onnx"), None)
                if model is None:
                    raise FileNotFoundError(f"Piper voice not found: {name}")
                engine = PiperTTS(PiperConfig(model_path=model, config_path=model.with_suffix(".onnx.json")))
                self._engines[name] = engine
            return engine

    def _render(self, utterance: Utterance) -> tuple[bytes, int]:
        engine = self._engine_for(utterance.voice)
        return engine.synthesize(utterance.text, length_scale=1.0 / utterance.rate)

    def _on_rendered(self, utterance: Utterance, future: Future[tuple[bytes, int]] | asyncio.Future[tuple[bytes, int]]) -> None:
        if utterance is not self._current or future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            LOGGER.warning("Piper synthesis failed: %s", exc)
            self._current = None
            if utterance.on_error:
                utterance.on_error("synthesis-failed")
            return
        pcm, sample_rate = future.result()
        if utterance.on_start:
            utterance.on_start()
        loop = self._get_loop()
        self.playback.play(
            pcm,
            sample_rate or None,
            on_drained=lambda: loop.call_soon_threadsafe(self._on_drained, utterance),
        )

    def _on_drained(self, utterance: Utterance) -> None:
        if utterance is not self._current:
            return
        self._current = None
        if utterance.on_end:
            utterance.on_end()
