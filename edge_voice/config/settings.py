"""Local configuration models for the voice client."""

from __future__ import annotations

from dataclasses import dataclass, field


DEFAULT_SYSTEM_PROMPT = "You are EDGE AI, a concise helpful assistant. Answer in a few short spoken sentences."


@dataclass(slots=True)
class ServerSettings:
    """Connection settings for the completion endpoint."""

    base_url: str = "http://127.0.0.1:8000"
    chat_path: str = "/api/chat"
    model: str | None = None
    timeout: float = 30.0
    verify_ssl: bool = True


@dataclass(slots=True)
class VoiceSettings:
    """Speech output preferences (mutated by user action)."""

    rate: float = 1.0
    preferred_voices: list[str] = field(
        default_factory=lambda: ["en_US-amy-medium", "en_US-lessac-medium", "en_GB-alba-medium"]
    )
    language: str = "en-US"
    enabled: bool = True


@dataclass(slots=True)
class ConversationSettings:
    """Request shaping for the completion endpoint."""

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    history_window: int = 12
    max_reply_words: int = 80


@dataclass(slots=True)
class RecognitionSettings:
    """Speech recognition engine and restart policy."""

    model: str = "base.en"
    device: str = "cpu"
    compute_type: str = "int8"
    language: str = "en"
    vad_aggressiveness: int = 2
    input_device: str | None = None
    restart_delay: float = 0.25
    busy_extra_delay: float = 0.5
    max_backoff: float = 1.0
    max_soft_failures: int = 5


@dataclass(slots=True)
class BargeInSettings:
    """Voice activity monitor used to interrupt speech."""

    threshold: float = 0.06
    cooldown: float = 0.6
    sample_hz: float = 60.0
    input_device: str | None = None


@dataclass(slots=True)
class TurnSettings:
    """Timings of the turn-taking loop (seconds)."""

    min_send_spacing: float = 1.1
    speech_cooldown: float = 0.35
    reply_cooldown: float = 0.5
    interrupt_settle: float = 0.6


@dataclass(slots=True)
class RetrySettings:
    """Backoff policy for completion requests."""

    max_attempts: int = 3
    base_delay: float = 0.8
    max_jitter: float = 0.2


@dataclass(slots=True)
class AppSettings:
    """Full set of settings for the voice client."""

    server: ServerSettings = field(default_factory=ServerSettings)
    voice: VoiceSettings = field(default_factory=VoiceSettings)
    conversation: ConversationSettings = field(default_factory=ConversationSettings)
    recognition: RecognitionSettings = field(default_factory=RecognitionSettings)
    barge_in: BargeInSettings = field(default_factory=BargeInSettings)
    turns: TurnSettings = field(default_factory=TurnSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
