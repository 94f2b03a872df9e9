"""Shared state model for the voice client."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

from ..config.settings import AppSettings
from ..services.schemas import ConversationTurn


class SessionState(str, Enum):
    """Turn-taking phase; exactly one is active at a time."""

    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"
    WAITING = "waiting"
    INTERRUPTED = "interrupted"
    PERMISSION_BLOCKED = "permission_blocked"


STATUS_TEXT: dict[SessionState, str] = {
    SessionState.IDLE: "Idle",
    SessionState.LISTENING: "Listening…",
    SessionState.THINKING: "Thinking…",
    SessionState.SPEAKING: "Speaking…",
    SessionState.WAITING: "Waiting…",
    SessionState.INTERRUPTED: "Interrupted",
    SessionState.PERMISSION_BLOCKED: "Microphone blocked",
}


class ConversationHistory:
    """Append-only list of turns. Only the turn controller appends."""

    def __init__(self, turns: list[ConversationTurn] | None = None) -> None:
        self._turns: list[ConversationTurn] = list(turns or [])

    def append(self, turn: ConversationTurn) -> None:
        self._turns.append(turn)

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(tuple(self._turns))


@dataclass(slots=True)
class AppState:
    """Global state for the client."""

    settings: AppSettings = field(default_factory=AppSettings)
    history: ConversationHistory = field(default_factory=ConversationHistory)
    session: SessionState = SessionState.IDLE
    status: str = STATUS_TEXT[SessionState.IDLE]
    warning: str | None = None
