from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, Response

from app.api.v1.deps import get_app_settings, get_http_client
from app.core.config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/image", tags=["image"])

IMMUTABLE_CACHE = "public, max-age=31536000, immutable"

# Recomputed by the response or invalid once the body is re-sent.
_HOP_HEADERS = {"content-length", "content-encoding", "transfer-encoding", "connection"}


@router.get("/{signature}/{ops}/{encoded_src}")
async def proxy_image(
    signature: str,
    ops: str,
    encoded_src: str,
    request: Request,
    http: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    if not signature or not ops or not encoded_src:
        raise HTTPException(status_code=400, detail="Invalid image URL")

    url = f"{settings.imgproxy_base_url.rstrip('/')}/{signature}/{ops}/{encoded_src}"
    headers = {}
    accept = request.headers.get("accept")
    if accept:
        headers["Accept"] = accept

    try:
        upstream = await http.get(url, headers=headers)
    except httpx.HTTPError as exc:
        logger.error("Failed to fetch from imgproxy url=%s error=%s", url, exc)
        raise HTTPException(status_code=502, detail="Failed to fetch image") from exc

    out_headers = {k: v for k, v in upstream.headers.items() if k.lower() not in _HOP_HEADERS}
    out_headers["Cache-Control"] = IMMUTABLE_CACHE
    return Response(content=upstream.content, status_code=upstream.status_code, headers=out_headers)
