from __future__ import annotations

import asyncio
import logging
import shutil
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from app.core.config import Settings
from app.core.errors import AssetNotFoundError
from app.models.asset import Asset, AssetKind, AssetState
from app.services.assets import AssetRepository, VariantRecord
from app.services.ffmpeg import HLS_LADDER, MASTER_PLAYLIST, FFmpegToolkit
from app.services.storage import ObjectStorage

logger = logging.getLogger(__name__)

HLS_CONTENT_TYPE = "application/vnd.apple.mpegurl"
SEGMENT_CONTENT_TYPE = "video/mp2t"
POSTER_NAME = "poster.jpg"

_CONTENT_TYPES = {
    ".m3u8": HLS_CONTENT_TYPE,
    ".ts": SEGMENT_CONTENT_TYPE,
}


def content_type_for(path: Path) -> str:
    return _CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")


def hls_prefix(asset_id: uuid.UUID | str) -> str:
    return f"{asset_id}/hls"


def poster_key(asset_id: uuid.UUID | str) -> str:
    return f"{asset_id}/{POSTER_NAME}"


def iter_directory_uploads(local_dir: Path, prefix: str) -> list[tuple[Path, str, str]]:
    """(file, object key, content type) for every file under ``local_dir``."""
    out: list[tuple[Path, str, str]] = []
    for path in sorted(p for p in local_dir.rglob("*") if p.is_file()):
        rel = path.relative_to(local_dir).as_posix()
        out.append((path, f"{prefix}/{rel}", content_type_for(path)))
    return out


def _dir_size(path: Path) -> int:
    return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())


@contextmanager
def job_workspace(root: Path, asset_id: uuid.UUID) -> Iterator[Path]:
    work_dir = root / str(asset_id)
    work_dir.mkdir(parents=True, exist_ok=True)
    try:
        yield work_dir
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)


class Processor:
    """Runs processing jobs for a single asset.

    ``transcode_video`` is the only job with real work: fetch the original,
    probe it, encode the HLS ladder, grab a poster, upload everything and
    mark the asset ready. Only the encode and the HLS upload mark the asset
    failed; a failed fetch leaves it in ``processing``.
    """

    def __init__(
        self,
        repo: AssetRepository,
        storage: ObjectStorage,
        toolkit: FFmpegToolkit,
        settings: Settings,
    ) -> None:
        self.repo = repo
        self.storage = storage
        self.toolkit = toolkit
        self.temp_root = Path(settings.temp_dir)
        self.bucket_vod = settings.bucket_vod
        self.bucket_thumbs = settings.bucket_thumbs

    async def _load_asset(self, asset_id: uuid.UUID) -> Asset:
        asset = await self.repo.get_asset(asset_id)
        if asset is None:
            raise AssetNotFoundError(f"Asset {asset_id} not found")
        return asset

    async def _download_original(self, asset: Asset, work_dir: Path) -> Path:
        input_path = work_dir / f"input{Path(asset.filename).suffix}"
        await asyncio.to_thread(self.storage.download_file, asset.bucket, asset.object_key, input_path)
        return input_path

    async def _mark_failed(self, asset_id: uuid.UUID) -> None:
        try:
            await self.repo.set_state(asset_id, AssetState.FAILED)
        except Exception:
            logger.exception("Failed to mark asset failed asset_id=%s", asset_id)

    async def _store_metadata(self, asset_id: uuid.UUID, input_path: Path) -> None:
        meta = await self.toolkit.probe(input_path)
        await self.repo.upsert_meta(
            asset_id,
            width=meta.width,
            height=meta.height,
            duration_seconds=meta.duration,
            codec=meta.codec,
            bitrate=meta.bitrate,
        )

    def _upload_directory(self, local_dir: Path, bucket: str, prefix: str) -> None:
        for path, key, content_type in iter_directory_uploads(local_dir, prefix):
            logger.debug("Uploading file=%s object_key=%s", path, key)
            self.storage.upload_file(bucket, key, path, content_type)

    def _hls_variants(self, asset_id: uuid.UUID, hls_dir: Path) -> list[VariantRecord]:
        prefix = hls_prefix(asset_id)
        out = [
            VariantRecord(
                variant_type="hls_master",
                path=f"{prefix}/{MASTER_PLAYLIST}",
                mime_type=HLS_CONTENT_TYPE,
            )
        ]
        for idx, rung in enumerate(HLS_LADDER):
            rung_dir = hls_dir / f"v{idx}"
            out.append(
                VariantRecord(
                    variant_type=f"hls_{rung.name}",
                    path=f"{prefix}/v{idx}/playlist.m3u8",
                    mime_type=HLS_CONTENT_TYPE,
                    width=rung.width,
                    height=rung.height,
                    bitrate=rung.video_kbps * 1000,
                    size_bytes=_dir_size(rung_dir) if rung_dir.is_dir() else None,
                )
            )
        return out

    async def transcode_video(self, asset_id: uuid.UUID) -> None:
        logger.info("Starting video transcode asset_id=%s", asset_id)
        asset = await self._load_asset(asset_id)

        with job_workspace(self.temp_root, asset_id) as work_dir:
            input_path = await self._download_original(asset, work_dir)

            try:
                await self._store_metadata(asset_id, input_path)
            except Exception:
                logger.warning("Failed to extract metadata, continuing anyway asset_id=%s", asset_id, exc_info=True)

            hls_dir = work_dir / "hls"
            hls_dir.mkdir(parents=True, exist_ok=True)
            try:
                has_audio = await self.toolkit.transcode_hls(input_path, hls_dir)
            except Exception:
                await self._mark_failed(asset_id)
                raise
            logger.info("Transcoded HLS ladder asset_id=%s has_audio=%s", asset_id, has_audio)

            variants: list[VariantRecord] = []
            poster_path = work_dir / POSTER_NAME
            try:
                await self.toolkit.generate_poster(input_path, poster_path)
            except Exception:
                logger.warning("Failed to generate poster asset_id=%s", asset_id, exc_info=True)
            else:
                try:
                    await asyncio.to_thread(
                        self.storage.upload_file,
                        self.bucket_thumbs,
                        poster_key(asset_id),
                        poster_path,
                        "image/jpeg",
                    )
                    variants.append(
                        VariantRecord(
                            variant_type="poster",
                            path=poster_key(asset_id),
                            mime_type="image/jpeg",
                            size_bytes=poster_path.stat().st_size,
                        )
                    )
                except Exception:
                    logger.warning("Failed to upload poster asset_id=%s", asset_id, exc_info=True)

            try:
                await asyncio.to_thread(self._upload_directory, hls_dir, self.bucket_vod, hls_prefix(asset_id))
            except Exception:
                await self._mark_failed(asset_id)
                raise

            variants = self._hls_variants(asset_id, hls_dir) + variants

        try:
            await self.repo.add_variants(asset_id, variants)
        except Exception:
            logger.warning("Failed to record renditions asset_id=%s", asset_id, exc_info=True)

        await self.repo.set_state(asset_id, AssetState.READY)
        logger.info("Video transcode completed successfully asset_id=%s", asset_id)

    async def generate_thumbnail(self, asset_id: uuid.UUID) -> None:
        # Images are resized on the fly by imgproxy; nothing is pre-rendered.
        logger.info("Generating thumbnail asset_id=%s", asset_id)

    async def extract_metadata(self, asset_id: uuid.UUID) -> None:
        logger.info("Extracting metadata asset_id=%s", asset_id)
        asset = await self._load_asset(asset_id)

        with job_workspace(self.temp_root, asset_id) as work_dir:
            input_path = await self._download_original(asset, work_dir)
            if asset.kind == AssetKind.VIDEO.value:
                await self._store_metadata(asset_id, input_path)
