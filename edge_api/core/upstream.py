"""Client for the hosted model provider."""

from __future__ import annotations

import httpx

from edge_api.core.config import Settings
from edge_voice.services.api import RemoteCompletionClient
from edge_voice.services.retry import RetryPolicy
from edge_voice.services.transports import ChatCompletionsTransport, LegacyGenerationTransport


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """Shared connection pool to the provider, authenticated with ``HF_TOKEN``."""
    return httpx.AsyncClient(
        base_url=settings.hf_api_base,
        timeout=httpx.Timeout(settings.upstream_timeout),
        headers={"Authorization": f"Bearer {settings.hf_token or ''}"},
    )


def build_upstream_client(
    settings: Settings,
    *,
    model: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> RemoteCompletionClient:
    """Chat completions first, legacy text generation once if that fails."""
    model = model or settings.hf_model
    return RemoteCompletionClient(
        base_url=settings.hf_api_base,
        system_prompt=settings.system_prompt,
        history_window=settings.history_window,
        max_reply_words=None,
        require_text=False,
        primary=ChatCompletionsTransport(
            model=model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        ),
        fallback=LegacyGenerationTransport(model=model, max_new_tokens=settings.max_new_tokens),
        policy=RetryPolicy(
            max_attempts=settings.upstream_attempts,
            base_delay=settings.upstream_retry_delay,
            max_jitter=0.0,
        ),
        headers={"Authorization": f"Bearer {settings.hf_token or ''}"},
        timeout=settings.upstream_timeout,
        client=client,
    )
