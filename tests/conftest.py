from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from app.core.config import Settings, get_settings
from app.core.errors import QueueError, StorageError
from app.models.asset import Asset, AssetMeta, AssetState
from app.services.assets import VariantRecord
from app.services.ffmpeg import HLS_LADDER, MASTER_PLAYLIST, VideoMetadata
from app.services.imgproxy import ImgproxySigner
from app.services.jobs import QueuedJob
from app.services.processor import Processor
from app.services.uploads import UploadService

# hex("secret") / hex("hello")
TEST_IMGPROXY_KEY = "736563726574"
TEST_IMGPROXY_SALT = "68656c6c6f"


class FakeAssetRepository:
    def __init__(self) -> None:
        self.assets: dict[uuid.UUID, Asset] = {}
        self.meta: dict[uuid.UUID, AssetMeta] = {}
        self.variants: dict[uuid.UUID, list[VariantRecord]] = {}
        self.jobs: dict[uuid.UUID, dict] = {}
        self.fail_create_job = False
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    async def create_asset(self, *, asset_id, kind, bucket, object_key, filename, mime_type, size_bytes) -> Asset:
        self._clock += timedelta(seconds=1)
        row = Asset(
            id=asset_id,
            kind=kind,
            state=AssetState.UPLOADING.value,
            bucket=bucket,
            object_key=object_key,
            filename=filename,
            mime_type=mime_type,
            size_bytes=size_bytes,
            created_at=self._clock,
            updated_at=self._clock,
        )
        self.assets[asset_id] = row
        return row

    async def get_asset(self, asset_id):
        return self.assets.get(asset_id)

    async def get_asset_with_meta(self, asset_id):
        asset = self.assets.get(asset_id)
        if asset is None:
            return None
        return asset, self.meta.get(asset_id)

    async def list_recent(self, limit: int):
        rows = sorted(self.assets.values(), key=lambda a: a.created_at, reverse=True)[:limit]
        return [(a, self.meta.get(a.id)) for a in rows]

    async def transition_state(self, asset_id, from_state, to_state) -> bool:
        asset = self.assets.get(asset_id)
        if asset is None or asset.state != from_state.value:
            return False
        asset.state = to_state.value
        return True

    async def set_state(self, asset_id, state) -> None:
        asset = self.assets.get(asset_id)
        if asset is not None:
            asset.state = state.value

    async def delete_asset(self, asset_id) -> bool:
        if self.assets.pop(asset_id, None) is None:
            return False
        self.meta.pop(asset_id, None)
        self.variants.pop(asset_id, None)
        for job_id in [k for k, v in self.jobs.items() if v["asset_id"] == asset_id]:
            del self.jobs[job_id]
        return True

    async def upsert_meta(self, asset_id, *, width, height, duration_seconds, codec, bitrate=None, exif=None) -> None:
        self.meta[asset_id] = AssetMeta(
            asset_id=asset_id,
            width=width,
            height=height,
            duration_seconds=None if duration_seconds is None else Decimal(str(round(duration_seconds, 2))),
            codec=codec,
            bitrate=bitrate,
            exif=exif,
        )

    async def add_variants(self, asset_id, variants) -> None:
        self.variants.setdefault(asset_id, []).extend(variants)

    async def create_job(self, *, job_id, asset_id, job_type) -> None:
        if self.fail_create_job:
            raise RuntimeError("database unavailable")
        self.jobs[job_id] = {"asset_id": asset_id, "type": job_type, "state": "pending", "attempts": 0, "error": None}

    async def mark_job_started(self, job_id) -> bool:
        job = self.jobs.get(job_id)
        if job is None:
            return False
        job["state"] = "processing"
        job["attempts"] += 1
        return True

    async def mark_job_finished(self, job_id, error=None) -> bool:
        job = self.jobs.get(job_id)
        if job is None:
            return False
        job["state"] = "failed" if error else "completed"
        job["error"] = error
        return True


class FakeStorage:
    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.uploads: list[tuple[str, str, str]] = []
        self.deleted: list[tuple[str, str]] = []
        self.fail_upload_prefixes: tuple[str, ...] = ()
        self.fail_delete = False
        self.fail_presign = False

    def presigned_put_url(self, bucket, object_key, content_type, expires_seconds) -> str:
        if self.fail_presign:
            raise StorageError("presign failed")
        return f"http://storage.test/{bucket}/{object_key}?X-Amz-Expires={expires_seconds}"

    def presigned_get_url(self, bucket, object_key, expires_seconds) -> str:
        return f"http://storage.test/{bucket}/{object_key}?X-Amz-Expires={expires_seconds}"

    def delete_object(self, bucket, object_key) -> None:
        if self.fail_delete:
            raise StorageError("delete failed")
        self.deleted.append((bucket, object_key))
        self.objects.pop((bucket, object_key), None)

    def download_file(self, bucket, object_key, dest: Path) -> None:
        data = self.objects.get((bucket, object_key))
        if data is None:
            raise FileNotFoundError(f"{bucket}/{object_key}")
        Path(dest).write_bytes(data)

    def upload_file(self, bucket, object_key, source: Path, content_type) -> None:
        if any(object_key.startswith(p) for p in self.fail_upload_prefixes):
            raise StorageError(f"upload failed for {object_key}")
        self.objects[(bucket, object_key)] = Path(source).read_bytes()
        self.uploads.append((bucket, object_key, content_type))


class FakeQueue:
    def __init__(self) -> None:
        self.items: list[str] = []
        self.fail_push = False
        self.fail_pops = 0
        self.pop_calls = 0

    @property
    def jobs(self) -> list[QueuedJob]:
        return [QueuedJob.from_json(x) for x in self.items]

    async def push(self, job: QueuedJob) -> None:
        if self.fail_push:
            raise QueueError("redis unavailable")
        self.items.append(job.to_json())

    async def requeue(self, payload: str) -> None:
        self.items.insert(0, payload)

    async def pop(self, timeout: float = 5):
        self.pop_calls += 1
        if self.fail_pops > 0:
            self.fail_pops -= 1
            raise QueueError("redis unavailable")
        if self.items:
            return self.items.pop(0)
        await asyncio.sleep(min(timeout, 0.01))
        return None


class FakeToolkit:
    def __init__(self) -> None:
        self.metadata = VideoMetadata(width=1920, height=1080, duration=12.5, codec="h264", bitrate=4_000_000)
        self.fail_probe = False
        self.fail_transcode = False
        self.fail_poster = False
        self.transcoded: list[Path] = []

    async def probe(self, input_path: Path) -> VideoMetadata:
        if self.fail_probe:
            raise ValueError("No video stream found")
        return self.metadata

    async def transcode_hls(self, input_path: Path, output_dir: Path) -> bool:
        if self.fail_transcode:
            raise RuntimeError("ffmpeg exited with status 1")
        self.transcoded.append(input_path)
        (output_dir / MASTER_PLAYLIST).write_text("#EXTM3U\n")
        for idx, _ in enumerate(HLS_LADDER):
            rung = output_dir / f"v{idx}"
            rung.mkdir(parents=True, exist_ok=True)
            (rung / "playlist.m3u8").write_text("#EXTM3U\n")
            (rung / "seg-000.ts").write_bytes(b"\x47" * 188)
        return True

    async def generate_poster(self, input_path: Path, output_path: Path) -> None:
        if self.fail_poster:
            raise RuntimeError("ffmpeg exited with status 1")
        output_path.write_bytes(b"\xff\xd8\xff")


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return get_settings().model_copy(
        update={
            "temp_dir": str(tmp_path / "work"),
            "public_vod_url": "http://vod.test",
            "public_thumbs_url": "http://thumbs.test",
            "public_imgproxy_url": "http://img.test",
            "imgproxy_base_url": "http://imgproxy.internal:8080",
        }
    )


@pytest.fixture
def repo() -> FakeAssetRepository:
    return FakeAssetRepository()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def toolkit() -> FakeToolkit:
    return FakeToolkit()


@pytest.fixture
def signer() -> ImgproxySigner:
    return ImgproxySigner(TEST_IMGPROXY_KEY, TEST_IMGPROXY_SALT)


@pytest.fixture
def uploads(repo, storage, queue, test_settings, signer) -> UploadService:
    return UploadService(repo, storage, queue, test_settings, signer=signer)


@pytest.fixture
def processor(repo, storage, toolkit, test_settings) -> Processor:
    return Processor(repo, storage, toolkit, test_settings)
