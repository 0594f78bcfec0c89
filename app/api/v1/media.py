from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from app.api.v1.deps import get_upload_service, http_error
from app.core.errors import InvalidRequestError, StorageError
from app.schemas.media import (
    AssetListOut,
    AssetOut,
    CompleteUploadIn,
    CompleteUploadOut,
    InitUploadIn,
    InitUploadOut,
)
from app.services.uploads import AssetView, UploadService

router = APIRouter(prefix="/media", tags=["media"])


def _asset_out(view: AssetView) -> AssetOut:
    asset, meta = view.asset, view.meta
    duration = None
    if meta is not None and meta.duration_seconds is not None:
        duration = float(meta.duration_seconds)
    return AssetOut(
        id=str(asset.id),
        kind=asset.kind,
        state=asset.state,
        filename=asset.filename,
        mime_type=asset.mime_type,
        size=int(asset.size_bytes or 0),
        bucket=asset.bucket,
        object_key=asset.object_key,
        width=meta.width if meta is not None else None,
        height=meta.height if meta is not None else None,
        duration=duration,
        created_at=asset.created_at,
        urls=view.urls,
    )


@router.post("/init-upload", response_model=InitUploadOut)
async def init_upload(
    payload: InitUploadIn,
    uploads: UploadService = Depends(get_upload_service),
) -> InitUploadOut:
    try:
        ticket = await uploads.initiate_upload(
            mime=payload.mime,
            kind=payload.kind,
            filename=payload.filename,
            size=payload.size,
        )
    except InvalidRequestError as exc:
        raise http_error(exc, "Invalid request body") from exc
    except StorageError as exc:
        raise http_error(exc, "Failed to generate upload URL") from exc
    except Exception as exc:
        raise http_error(exc, "Failed to create asset") from exc

    return InitUploadOut(
        asset_id=str(ticket.asset_id),
        bucket=ticket.bucket,
        object_key=ticket.object_key,
        presigned_url=ticket.presigned_url,
        headers=ticket.headers,
        expires_in=ticket.expires_in,
    )


@router.post("/complete", response_model=CompleteUploadOut, response_model_exclude_none=True)
async def complete_upload(
    payload: CompleteUploadIn,
    uploads: UploadService = Depends(get_upload_service),
) -> CompleteUploadOut:
    try:
        result = await uploads.complete_upload(payload.asset_id)
    except Exception as exc:
        raise http_error(exc, "Failed to update asset") from exc
    return CompleteUploadOut(state=result.state, message=result.message)


@router.get("", response_model=AssetListOut, response_model_exclude_none=True)
async def list_media(uploads: UploadService = Depends(get_upload_service)) -> AssetListOut:
    try:
        views = await uploads.list_assets()
    except Exception as exc:
        raise http_error(exc, "Failed to list assets") from exc
    assets = [_asset_out(v) for v in views]
    return AssetListOut(assets=assets, total=len(assets))


@router.get("/{asset_id}", response_model=AssetOut, response_model_exclude_none=True)
async def get_media(asset_id: str, uploads: UploadService = Depends(get_upload_service)) -> AssetOut:
    try:
        view = await uploads.get_asset(asset_id)
    except Exception as exc:
        raise http_error(exc, "Failed to get asset") from exc
    return _asset_out(view)


@router.delete("/{asset_id}", status_code=204)
async def delete_media(asset_id: str, uploads: UploadService = Depends(get_upload_service)) -> Response:
    try:
        await uploads.delete_asset(asset_id)
    except Exception as exc:
        raise http_error(exc, "Failed to delete asset") from exc
    return Response(status_code=204)
