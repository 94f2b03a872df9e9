from __future__ import annotations

from typing import Any, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field, ValidationError

from edge_api.core.config import Settings, get_settings
from edge_api.core.errors import error_json
from edge_api.core.logger import get_logger
from edge_api.core.upstream import build_http_client, build_upstream_client
from edge_voice.services.errors import CompletionError
from edge_voice.services.schemas import ConversationTurn


router = APIRouter(prefix="/api", tags=["chat"])
logger = get_logger("server")

MODEL_ID_PATTERN = r"^[A-Za-z0-9_][A-Za-z0-9_.-]*(/[A-Za-z0-9_][A-Za-z0-9_.-]*)?$"


class ChatMessageIn(BaseModel):
    role: str = "user"
    content: str = ""


class ChatRequest(BaseModel):
    messages: list[ChatMessageIn] = Field(default_factory=list)
    # Hub repo id ("org/name"); it becomes part of the upstream URL path.
    model: Optional[str] = Field(default=None, pattern=MODEL_ID_PATTERN)


def upstream_http_client(request: Request, settings: Settings = Depends(get_settings)) -> httpx.AsyncClient:
    """Connection pool kept on the application state."""
    client = getattr(request.app.state, "upstream_http", None)
    if client is None:
        client = build_http_client(settings)
        request.app.state.upstream_http = client
    return client


def split_messages(messages: list[ChatMessageIn]) -> tuple[str | None, list[ConversationTurn]]:
    """Return the first system prompt received and the remaining turns."""
    system_prompt: str | None = None
    turns: list[ConversationTurn] = []
    for message in messages:
        if message.role == "system":
            if system_prompt is None and message.content.strip():
                system_prompt = message.content
            continue
        role = "assistant" if message.role == "assistant" else "user"
        turns.append(ConversationTurn(role=role, content=message.content))
    return system_prompt, turns


@router.post("/chat")
async def chat(
    request: Request,
    settings: Settings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(upstream_http_client),
) -> Any:
    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="request body is not valid JSON") from exc
    try:
        payload = ChatRequest.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=jsonable_encoder(exc.errors())) from exc

    if not settings.hf_token:
        logger.error("HF_TOKEN is not configured")
        return error_json(500, "HF_TOKEN is not configured")

    system_prompt, turns = split_messages(payload.messages)
    upstream = build_upstream_client(settings, model=payload.model, client=http_client)
    try:
        reply = await upstream.send(turns, system_prompt=system_prompt)
    except CompletionError as exc:
        status = exc.status if exc.status is not None else "unreachable"
        logger.warning("Upstream failure: %s", exc)
        return error_json(502, f"upstream error {status}", exc.detail or str(exc))

    logger.info("Chat reply via %s (%d attempt(s))", reply.mode, reply.attempts)
    return {"reply": reply.text, "mode": reply.mode}
