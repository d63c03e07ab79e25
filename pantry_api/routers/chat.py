import logging
import os
from typing import Any

import httpx
from fastapi import APIRouter, Depends, status

from .. import schemas
from ..deps import get_http_client
from ..errors import api_error
from ..prompts import CHAT_SYSTEM_PROMPT
from .common import safe_detail

logger = logging.getLogger(__name__)

router = APIRouter()

CHAT_API_URL = os.getenv("CHAT_API_URL", "https://openrouter.ai/api/v1/chat/completions")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
CHAT_REFERER = os.getenv("CHAT_REFERER", "https://lojasocial-ipca.app")
CHAT_TITLE = os.getenv("CHAT_TITLE", "Loja Social IPCA")


@router.post("")
async def chat(
    payload: schemas.ChatRequest,
    client: httpx.AsyncClient = Depends(get_http_client),
) -> Any:
    body = payload.model_dump()
    body["messages"] = [CHAT_SYSTEM_PROMPT, *payload.messages]
    headers = {
        "Authorization": f"Bearer {OPENROUTER_API_KEY}",
        "HTTP-Referer": CHAT_REFERER,
        "X-Title": CHAT_TITLE,
    }
    logger.info("Forwarding chat completion with %d messages", len(body["messages"]))
    try:
        response = await client.post(CHAT_API_URL, json=body, headers=headers)
    except httpx.HTTPError as exc:
        logger.error("Chat provider unreachable: %s", exc)
        raise api_error(status.HTTP_502_BAD_GATEWAY, "chat.upstream_unreachable", "Failed to process request") from exc
    if response.is_error:
        logger.error("Chat provider returned %s", response.status_code)
        raise api_error(
            response.status_code,
            "chat.upstream_error",
            safe_detail(response, "Failed to process request"),
        )
    return response.json()
