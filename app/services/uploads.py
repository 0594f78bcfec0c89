from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any

from app.core.config import Settings
from app.core.errors import (
    AssetNotFoundError,
    AssetNotReadyError,
    InvalidRequestError,
    NotAVideoError,
    QueueError,
)
from app.models.asset import Asset, AssetKind, AssetMeta, AssetState
from app.models.job import JobType
from app.services.assets import AssetRepository
from app.services.imgproxy import THUMBNAIL_OPERATIONS, ImgproxySigner
from app.services.jobs import JobQueue, QueuedJob
from app.services.processor import hls_prefix, poster_key
from app.services.storage import ObjectStorage

logger = logging.getLogger(__name__)

_KINDS = {k.value for k in AssetKind}


@dataclass(slots=True)
class UploadTicket:
    asset_id: uuid.UUID
    bucket: str
    object_key: str
    presigned_url: str
    headers: dict[str, str]
    expires_in: int


@dataclass(slots=True)
class CompletionResult:
    state: str
    message: str
    job_id: str | None = None


@dataclass(slots=True)
class AssetView:
    asset: Asset
    meta: AssetMeta | None
    urls: dict[str, Any] = field(default_factory=dict)


def parse_asset_id(raw: str | uuid.UUID) -> uuid.UUID:
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(str(raw or "").strip())
    except ValueError as exc:
        raise InvalidRequestError("Invalid asset ID") from exc


def build_object_key(asset_id: uuid.UUID, filename: str, now: datetime | None = None) -> str:
    day = (now or datetime.now(timezone.utc)).strftime("%Y/%m/%d")
    return f"{day}/{asset_id}{PurePosixPath(filename).suffix}"


class UploadService:
    """Upload protocol: init (row + presigned PUT), complete (state change + job)."""

    def __init__(
        self,
        repo: AssetRepository,
        storage: ObjectStorage,
        queue: JobQueue,
        settings: Settings,
        signer: ImgproxySigner | None = None,
    ) -> None:
        self.repo = repo
        self.storage = storage
        self.queue = queue
        self.settings = settings
        self.signer = signer

    async def initiate_upload(self, *, mime: str, kind: str, filename: str, size: int) -> UploadTicket:
        mime = (mime or "").strip()
        kind = (kind or "").strip()
        filename = (filename or "").strip()
        if not mime or not kind or not filename:
            raise InvalidRequestError("Missing required fields: mime, kind, filename")
        if kind not in _KINDS:
            raise InvalidRequestError("Invalid kind. Must be: image, video, audio, or document")

        asset_id = uuid.uuid4()
        bucket = self.settings.bucket_originals
        object_key = build_object_key(asset_id, filename)

        # Declared size is trusted until the bytes are processed.
        await self.repo.create_asset(
            asset_id=asset_id,
            kind=kind,
            bucket=bucket,
            object_key=object_key,
            filename=filename,
            mime_type=mime,
            size_bytes=int(size or 0),
        )

        expires = self.settings.upload_url_expires_seconds
        url = self.storage.presigned_put_url(bucket, object_key, mime, expires)
        logger.info("Upload initiated asset_id=%s kind=%s object_key=%s", asset_id, kind, object_key)
        return UploadTicket(
            asset_id=asset_id,
            bucket=bucket,
            object_key=object_key,
            presigned_url=url,
            headers={"Content-Type": mime},
            expires_in=expires,
        )

    async def complete_upload(self, raw_asset_id: str) -> CompletionResult:
        asset_id = parse_asset_id(raw_asset_id)

        moved = await self.repo.transition_state(asset_id, AssetState.UPLOADING, AssetState.PROCESSING)
        if not moved:
            raise AssetNotFoundError("Asset not found or already processed")

        asset = await self.repo.get_asset(asset_id)
        if asset is None:
            raise AssetNotFoundError("Asset not found or already processed")

        if asset.kind == AssetKind.VIDEO.value:
            job = await self._enqueue(asset_id, JobType.TRANSCODE)
            return CompletionResult(
                state=AssetState.PROCESSING.value,
                message="Upload completed successfully",
                job_id=job.id,
            )

        # Images are transformed on read by imgproxy; audio and documents
        # have no processing yet.
        if not await self.repo.transition_state(asset_id, AssetState.PROCESSING, AssetState.READY):
            logger.error("Failed to update asset state to ready asset_id=%s", asset_id)
        return CompletionResult(state=AssetState.READY.value, message="Upload completed successfully")

    async def _enqueue(self, asset_id: uuid.UUID, job_type: JobType) -> QueuedJob:
        # The state change above is already committed: a lost job here leaves
        # the asset in processing and is only logged.
        job = QueuedJob.new(asset_id, job_type)
        try:
            await self.repo.create_job(job_id=uuid.UUID(job.id), asset_id=asset_id, job_type=job.type)
        except Exception:
            logger.exception("Failed to record processing job job_id=%s asset_id=%s", job.id, asset_id)
        try:
            await self.queue.push(job)
        except QueueError:
            logger.exception("Failed to enqueue %s job job_id=%s asset_id=%s", job.type, job.id, asset_id)
        else:
            logger.info("Enqueued %s job job_id=%s asset_id=%s", job.type, job.id, asset_id)
        return job

    def build_urls(self, asset: Asset) -> dict[str, Any]:
        if asset.state != AssetState.READY.value:
            return {}

        urls: dict[str, Any] = {}
        if asset.kind == AssetKind.IMAGE.value:
            if self.signer is not None:
                source = f"s3://{asset.bucket}/{asset.object_key}"
                signed = self.signer.sign_url(THUMBNAIL_OPERATIONS, source)
                urls["thumbnail"] = f"{self.settings.public_imgproxy_url.rstrip('/')}{signed}"
            urls["transform"] = f"{self.settings.api_prefix}/image/{{signature}}/{{ops}}/{{encodedSrc}}"
        elif asset.kind == AssetKind.VIDEO.value:
            urls["hls"] = f"{self.settings.public_vod_url.rstrip('/')}/{hls_prefix(asset.id)}/master.m3u8"
            urls["poster"] = f"{self.settings.public_thumbs_url.rstrip('/')}/{poster_key(asset.id)}"
        return urls

    async def get_asset(self, raw_asset_id: str) -> AssetView:
        asset_id = parse_asset_id(raw_asset_id)
        found = await self.repo.get_asset_with_meta(asset_id)
        if found is None:
            raise AssetNotFoundError("Asset not found")
        asset, meta = found
        return AssetView(asset=asset, meta=meta, urls=self.build_urls(asset))

    async def list_assets(self) -> list[AssetView]:
        rows = await self.repo.list_recent(self.settings.list_page_size)
        return [AssetView(asset=a, meta=m, urls=self.build_urls(a)) for a, m in rows]

    async def delete_asset(self, raw_asset_id: str) -> None:
        asset_id = parse_asset_id(raw_asset_id)
        asset = await self.repo.get_asset(asset_id)
        if asset is None:
            raise AssetNotFoundError("Asset not found")

        try:
            await asyncio.to_thread(self.storage.delete_object, asset.bucket, asset.object_key)
        except Exception:
            logger.exception("Failed to delete object from storage asset_id=%s", asset_id)

        if not await self.repo.delete_asset(asset_id):
            raise AssetNotFoundError("Asset not found")
        logger.info("Deleted asset asset_id=%s", asset_id)

    async def manifest_url(self, raw_asset_id: str) -> str:
        asset_id = parse_asset_id(raw_asset_id)
        asset = await self.repo.get_asset(asset_id)
        if asset is None:
            raise AssetNotFoundError("Asset not found")
        if asset.kind != AssetKind.VIDEO.value:
            raise NotAVideoError("Asset is not a video")
        if asset.state != AssetState.READY.value:
            raise AssetNotReadyError("Video is still processing")
        return self.storage.presigned_get_url(
            self.settings.bucket_vod,
            f"{hls_prefix(asset_id)}/master.m3u8",
            self.settings.manifest_url_expires_seconds,
        )
