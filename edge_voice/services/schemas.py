"""Data schemas exchanged with the completion endpoint."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Literal


Role = Literal["user", "assistant", "system"]

ERROR_MARKER = "[error]"


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    """One message of the conversation. Immutable once appended."""

    role: Role
    content: str
    error: bool = False

    def to_payload(self) -> dict[str, Any]:
        """Serialize the turn for the request body."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def error_turn(cls) -> "ConversationTurn":
        """Build the generic assistant turn shown when a request fails."""
        return cls(role="assistant", content=ERROR_MARKER, error=True)


def clamp_window(turns: Iterable[ConversationTurn], size: int) -> list[ConversationTurn]:
    """Return the last ``size`` turns worth sending (no system or error turns)."""
    sendable = [turn for turn in turns if turn.role != "system" and not turn.error]
    if size <= 0:
        return []
    return sendable[-size:]


@dataclass(frozen=True, slots=True)
class CompletionReply:
    """Normalized reply handed to the controller, whatever the transport."""

    text: str
    mode: str = "chat"
    attempts: int = 1
