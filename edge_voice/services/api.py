"""HTTP client used to talk to the completion endpoint."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx

from ..config.settings import AppSettings
from .errors import CompletionError, InvalidResponse, NetworkError, classify_status
from .retry import RetryPolicy
from .schemas import CompletionReply, ConversationTurn, clamp_window
from .transports import ChatEndpointTransport, Message, Transport

LOGGER = logging.getLogger(__name__)

ELLIPSIS = "…"


def truncate_words(text: str, max_words: Optional[int]) -> str:
    """Cap ``text`` at ``max_words`` words, marking the cut with an ellipsis.

    Text at or under the cap is returned unchanged.
    """
    if max_words is None:
        return text
    words = text.split()
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words]) + ELLIPSIS


class RemoteCompletionClient:
    """Async client sending the trimmed history and returning a bounded reply."""

    def __init__(
        self,
        *,
        base_url: str,
        system_prompt: str,
        history_window: int = 12,
        max_reply_words: Optional[int] = 80,
        require_text: bool = True,
        primary: Transport | None = None,
        fallback: Transport | None = None,
        policy: RetryPolicy | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.system_prompt = system_prompt
        self.history_window = history_window
        self.max_reply_words = max_reply_words
        self.require_text = require_text
        self.primary: Transport = primary or ChatEndpointTransport()
        self.fallback = fallback
        self.policy = policy or RetryPolicy()
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            verify=verify_ssl,
            timeout=httpx.Timeout(timeout),
        )
        self._sleep = sleep
        self._rng = rng

    @classmethod
    def from_settings(cls, settings: AppSettings, **kwargs: Any) -> "RemoteCompletionClient":
        """Build the client used by the voice client."""
        server = settings.server
        conversation = settings.conversation
        retry = settings.retry
        kwargs.setdefault(
            "primary",
            ChatEndpointTransport(path=server.chat_path, model=server.model),
        )
        kwargs.setdefault(
            "policy",
            RetryPolicy(
                max_attempts=retry.max_attempts,
                base_delay=retry.base_delay,
                max_jitter=retry.max_jitter,
            ),
        )
        return cls(
            base_url=server.base_url,
            system_prompt=conversation.system_prompt,
            history_window=conversation.history_window,
            max_reply_words=conversation.max_reply_words,
            timeout=server.timeout,
            verify_ssl=server.verify_ssl,
            **kwargs,
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def build_messages(
        self,
        history: Iterable[ConversationTurn],
        system_prompt: str | None = None,
    ) -> list[Message]:
        """Prepend exactly one system turn to the clamped trailing window."""
        window = clamp_window(history, self.history_window)
        messages: list[Message] = [{"role": "system", "content": system_prompt or self.system_prompt}]
        messages.extend(turn.to_payload() for turn in window)
        return messages

    async def send(
        self,
        history: Iterable[ConversationTurn],
        *,
        system_prompt: str | None = None,
    ) -> CompletionReply:
        """Send the conversation and return the normalized reply.

        ``system_prompt`` replaces the configured prompt for this request only.
        """
        messages = self.build_messages(history, system_prompt)
        try:
            text, mode, attempts = await self._send_with_retries(self.primary, messages)
        except CompletionError as exc:
            if self.fallback is None:
                raise
            LOGGER.warning(
                "Primary transport %s failed (%s); trying %s once",
                self.primary.mode,
                exc,
                self.fallback.mode,
            )
            text, mode = await self._post_once(self.fallback, messages)
            attempts = self.policy.max_attempts + 1

        reply = truncate_words(text.strip(), self.max_reply_words)
        if not reply and self.require_text:
            raise InvalidResponse("empty reply")
        return CompletionReply(text=reply, mode=mode or self.primary.mode, attempts=attempts)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _send_with_retries(
        self,
        transport: Transport,
        messages: list[Message],
    ) -> tuple[str, str | None, int]:
        last_error: CompletionError | None = None
        for attempt in self.policy.attempts(self._rng):
            if attempt.delay > 0:
                LOGGER.info("Retrying completion in %.2fs (attempt %d)", attempt.delay, attempt.number)
                await self._sleep(attempt.delay)
            try:
                text, mode = await self._post_once(transport, messages)
            except CompletionError as exc:
                if not exc.retriable:
                    raise
                LOGGER.warning(
                    "Completion attempt %d/%d failed: %s",
                    attempt.number,
                    self.policy.max_attempts,
                    exc,
                )
                last_error = exc
                continue
            return text, mode, attempt.number
        assert last_error is not None
        raise last_error

    async def _post_once(self, transport: Transport, messages: list[Message]) -> tuple[str, str | None]:
        path, payload = transport.build_request(messages)
        try:
            response = await self._client.post(path, json=payload, headers=self._headers)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"timeout contacting completion service: {exc}") from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"cannot reach completion service: {exc}") from exc
        if not response.is_success:
            raise classify_status(response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as exc:
            raise InvalidResponse(
                "non-JSON body from completion service",
                status=response.status_code,
                detail=response.text,
            ) from exc
        return transport.parse(data)
