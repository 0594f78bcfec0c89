from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Response

from app.api.v1.deps import get_http_client, get_upload_service, http_error
from app.services.uploads import UploadService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/video", tags=["video"])

MANIFEST_HEADERS = {
    "Cache-Control": "public, max-age=3600",
    "Access-Control-Allow-Origin": "*",
}


@router.get("/{asset_id}/master.m3u8")
async def video_manifest(
    asset_id: str,
    uploads: UploadService = Depends(get_upload_service),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> Response:
    try:
        url = await uploads.manifest_url(asset_id)
    except Exception as exc:
        raise http_error(exc, "Failed to fetch video manifest") from exc

    try:
        upstream = await http.get(url)
    except httpx.HTTPError as exc:
        logger.exception("Failed to fetch manifest asset_id=%s", asset_id)
        raise HTTPException(status_code=500, detail="Failed to fetch video manifest") from exc

    if upstream.status_code != 200:
        logger.warning("Manifest fetch returned status=%s asset_id=%s", upstream.status_code, asset_id)
        raise HTTPException(status_code=upstream.status_code, detail="Failed to fetch video manifest")

    return Response(
        content=upstream.content,
        media_type="application/vnd.apple.mpegurl",
        headers=MANIFEST_HEADERS,
    )
