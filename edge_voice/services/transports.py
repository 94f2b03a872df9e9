"""Request shapes understood by the completion client.

Every transport turns the shaped message list into one POST request and turns
the decoded JSON body back into reply text. The client owns retries, fallback
and post-processing, so swapping transports never changes what the controller
observes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from .errors import InvalidResponse


Message = dict[str, str]


class Transport(Protocol):
    """Protocol implemented by every request shape."""

    mode: str

    def build_request(self, messages: Sequence[Message]) -> tuple[str, dict[str, Any]]: ...

    def parse(self, data: Any) -> tuple[str, str | None]: ...


@dataclass(slots=True)
class ChatEndpointTransport:
    """The edge_api contract: ``{messages}`` in, ``{reply, mode?}`` out."""

    path: str = "/api/chat"
    model: str | None = None
    mode: str = "chat"

    def build_request(self, messages: Sequence[Message]) -> tuple[str, dict[str, Any]]:
        payload: dict[str, Any] = {"messages": list(messages)}
        if self.model:
            payload["model"] = self.model
        return self.path, payload

    def parse(self, data: Any) -> tuple[str, str | None]:
        if not isinstance(data, dict):
            raise InvalidResponse("reply body is not an object", detail=repr(data))
        reply = data.get("reply")
        if not isinstance(reply, str):
            raise InvalidResponse("missing 'reply' field", detail=repr(data))
        mode = data.get("mode")
        return reply, mode if isinstance(mode, str) else None


@dataclass(slots=True)
class ChatCompletionsTransport:
    """OpenAI-style ``/v1/chat/completions``."""

    model: str
    path: str = "/v1/chat/completions"
    max_tokens: int = 300
    temperature: float = 0.7
    mode: str = "v1"

    def build_request(self, messages: Sequence[Message]) -> tuple[str, dict[str, Any]]:
        return self.path, {
            "model": self.model,
            "messages": list(messages),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

    def parse(self, data: Any) -> tuple[str, str | None]:
        if not isinstance(data, dict):
            raise InvalidResponse("completion body is not an object", detail=repr(data))
        choices = data.get("choices") or []
        choice = choices[0] if choices and isinstance(choices[0], dict) else {}
        message = choice.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            content = choice.get("text")
        if not isinstance(content, str):
            raise InvalidResponse("no message content in completion", detail=repr(data))
        return content, self.mode


def to_chat_markup(messages: Sequence[Message]) -> str:
    """Render messages with the ``<|role|>`` markup used by instruct models."""
    parts: list[str] = []
    for message in messages:
        role = message.get("role")
        if role == "system":
            tag = "system"
        elif role == "assistant":
            tag = "assistant"
        else:
            tag = "user"
        parts.append(f"<|{tag}|>\n{message.get('content', '')}</s>\n")
    return "".join(parts) + "<|assistant|>\n"


@dataclass(slots=True)
class LegacyGenerationTransport:
    """Hugging Face text-generation endpoint (``/models/{model}``)."""

    model: str
    max_new_tokens: int = 256
    mode: str = "legacy"

    def build_request(self, messages: Sequence[Message]) -> tuple[str, dict[str, Any]]:
        return f"/models/{self.model}", {
            "inputs": to_chat_markup(messages),
            "parameters": {"max_new_tokens": self.max_new_tokens, "return_full_text": False},
            "options": {"wait_for_model": True},
        }

    def parse(self, data: Any) -> tuple[str, str | None]:
        item = data[0] if isinstance(data, list) and data else data
        text = item.get("generated_text") if isinstance(item, dict) else None
        if not isinstance(text, str):
            raise InvalidResponse("no generated_text in response", detail=repr(data))
        return text, self.mode
