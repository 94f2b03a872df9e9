"""Speech synthesis with voice selection and completion callbacks."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional, Sequence

from ..audio.capabilities import SynthesisCapability, Utterance, Voice
from ..config.settings import VoiceSettings
from .speech_input import SpeechInputSession

LOGGER = logging.getLogger(__name__)


def _normalize_lang(tag: str | None) -> str:
    return (tag or "").replace("_", "-").lower()


def select_voice(voices: Sequence[Voice], preferred: Iterable[str], language: str | None) -> Voice | None:
    """Pick a voice: named preferences first, then the language hint, then the default.

    Returns None when the platform default should be used.
    """
    if not voices:
        return None
    by_name = {voice.name.lower(): voice for voice in voices}
    for name in preferred:
        match = by_name.get(name.lower())
        if match is not None:
            return match
    hint = _normalize_lang(language)
    if hint:
        for voice in voices:
            if _normalize_lang(voice.lang) == hint:
                return voice
    for voice in voices:
        if voice.default:
            return voice
    return None


class SpeechOutputSession:
    """Speak one utterance at a time on behalf of the controller."""

    def __init__(
        self,
        synthesizer: SynthesisCapability,
        settings: VoiceSettings,
        *,
        input_session: SpeechInputSession | None = None,
    ) -> None:
        self._synth = synthesizer
        self.settings = settings
        self._input = input_session
        self.on_speech_start: Optional[Callable[[], None]] = None
        self.on_speech_end: Optional[Callable[[str | None], None]] = None

        self._current: Utterance | None = None
        self._voice: Voice | None = None
        self._voice_resolved = False
        synthesizer.on_voices_changed = self._handle_voices_changed

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def speaking(self) -> bool:
        """True from ``speak()`` until the utterance ends or is cancelled."""
        return self._current is not None

    @property
    def voice(self) -> Voice | None:
        return self._voice

    def refresh_voice(self) -> Voice | None:
        """Re-run voice selection against the current voice list."""
        voices = self._synth.get_voices()
        if not voices:
            # Voice lists load lazily; retried from on_voices_changed.
            self._voice_resolved = False
            self._voice = None
            return None
        self._voice = select_voice(voices, self.settings.preferred_voices, self.settings.language)
        self._voice_resolved = True
        LOGGER.info("Selected voice: %s", self._voice.name if self._voice else "<platform default>")
        return self._voice

    def speak(self, text: str, rate: float | None = None) -> bool:
        """Speak ``text``, replacing anything queued. Returns False if nothing was queued."""
        text = text.strip()
        if not text:
            return False
        if self._input is not None:
            self._input.stop()
        self._current = None
        self._synth.cancel()

        if not self._voice_resolved:
            self.refresh_voice()
        rate = rate if rate is not None else self.settings.rate
        if rate <= 0:
            rate = 1.0
        utterance = Utterance(text=text, rate=rate, voice=self._voice)
        utterance.on_start = lambda: self._handle_start(utterance)
        utterance.on_end = lambda: self._handle_end(utterance)
        utterance.on_error = lambda kind: self._handle_error(utterance, kind)
        self._current = utterance
        try:
            self._synth.speak(utterance)
        except Exception as exc:  # pragma: no cover - engine specific
            LOGGER.warning("Synthesis failed to start: %s", exc)
            self._handle_error(utterance, "synthesis-failed")
            return False
        return True

    def cancel(self) -> None:
        """Stop speaking now. Safe to call repeatedly or when idle."""
        self._current = None
        self._synth.cancel()

    # ------------------------------------------------------------------ #
    # Engine events
    # ------------------------------------------------------------------ #
    def _handle_voices_changed(self) -> None:
        if not self._voice_resolved:
            self.refresh_voice()

    def _handle_start(self, utterance: Utterance) -> None:
        if utterance is self._current and self.on_speech_start:
            self.on_speech_start()

    def _handle_end(self, utterance: Utterance) -> None:
        if utterance is not self._current:
            return
        self._current = None
        if self.on_speech_end:
            self.on_speech_end(None)

    def _handle_error(self, utterance: Utterance, kind: str) -> None:
        if utterance is not self._current:
            return
        self._current = None
        LOGGER.warning("Synthesis error: %s", kind)
        if self.on_speech_end:
            self.on_speech_end(kind)
