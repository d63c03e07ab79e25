import json
import logging
import os
from typing import Any

import httpx
from fastapi import APIRouter, Depends, Query, Request, status

from ..cache import cache_get, cache_set, hit_rate_limit
from ..deps import get_http_client
from ..errors import api_error
from .common import safe_detail

logger = logging.getLogger(__name__)

router = APIRouter()

BARCODE_API_URL = os.getenv("BARCODE_API_URL", "")
BARCODE_API_KEY = os.getenv("BARCODE_API_KEY", "")
CACHE_TTL_S = int(os.getenv("BARCODE_CACHE_TTL_S", "600"))
RATE_LIMIT_WINDOW_MS = int(os.getenv("BARCODE_RATE_LIMIT_WINDOW_MS", "1000"))
RATE_LIMIT_MAX = int(os.getenv("BARCODE_RATE_LIMIT_MAX", "1"))


@router.get("")
async def lookup_barcode(
    request: Request,
    barcode: str | None = Query(None),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> Any:
    client_key = request.client.host if request.client else "unknown"
    if await hit_rate_limit(f"barcode:{client_key}", RATE_LIMIT_WINDOW_MS, RATE_LIMIT_MAX):
        raise api_error(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "barcode.rate_limited",
            f"Rate limit exceeded. Maximum {RATE_LIMIT_MAX} requests per {RATE_LIMIT_WINDOW_MS / 1000:g} seconds.",
        )

    cache_key = f"barcode:lookup:{barcode}"
    if barcode:
        cached = await cache_get(cache_key)
        if cached is not None:
            logger.info("Barcode %s served from cache", barcode)
            return json.loads(cached)

    if not BARCODE_API_URL or not BARCODE_API_KEY:
        logger.error("Barcode API configuration missing")
        raise api_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "barcode.not_configured", "Barcode API configuration missing"
        )
    if not barcode:
        raise api_error(status.HTTP_400_BAD_REQUEST, "barcode.missing", "Barcode parameter is required")

    try:
        response = await client.get(
            f"{BARCODE_API_URL}/v3/products",
            params={"barcode": barcode, "formatted": "y", "key": BARCODE_API_KEY},
        )
    except httpx.HTTPError as exc:
        logger.error("Barcode API unreachable: %s", exc)
        raise api_error(status.HTTP_502_BAD_GATEWAY, "barcode.upstream_unreachable", "Failed to fetch barcode data") from exc
    if response.is_error:
        logger.error("Barcode API returned %s for %s", response.status_code, barcode)
        raise api_error(
            response.status_code,
            "barcode.upstream_error",
            safe_detail(response, "Failed to fetch barcode data"),
        )

    data = response.json()
    products = data.get("products") if isinstance(data, dict) else None
    logger.info("Barcode %s resolved with %d products", barcode, len(products or []))
    await cache_set(cache_key, json.dumps(data), CACHE_TTL_S)
    return data
