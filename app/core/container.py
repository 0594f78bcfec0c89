from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.core.errors import StorageError
from app.db.redis import create_redis
from app.db.session import create_engine, create_session_factory, init_models
from app.services.assets import AssetRepository
from app.services.ffmpeg import FFmpegToolkit
from app.services.imgproxy import ImgproxySigner
from app.services.jobs import JobQueue
from app.services.processor import Processor
from app.services.storage import ObjectStorage
from app.services.uploads import UploadService

logger = logging.getLogger(__name__)


def build_signer(settings: Settings) -> ImgproxySigner | None:
    if not settings.imgproxy_key or not settings.imgproxy_salt:
        logger.warning("IMGPROXY_KEY/IMGPROXY_SALT not set, thumbnail URLs disabled")
        return None
    return ImgproxySigner(settings.imgproxy_key, settings.imgproxy_salt)


@dataclass(slots=True)
class Services:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    redis: Redis
    repo: AssetRepository
    storage: ObjectStorage
    queue: JobQueue
    uploads: UploadService
    http: httpx.AsyncClient

    def processor(self) -> Processor:
        toolkit = FFmpegToolkit(self.settings.ffmpeg_bin, self.settings.ffprobe_bin)
        return Processor(self.repo, self.storage, toolkit, self.settings)

    async def prepare(self) -> None:
        if self.settings.db_auto_create:
            await init_models(self.engine)
        for bucket in (self.settings.bucket_originals, self.settings.bucket_vod, self.settings.bucket_thumbs):
            try:
                await asyncio.to_thread(self.storage.ensure_bucket, bucket)
            except StorageError:
                logger.warning("Could not ensure bucket bucket=%s", bucket, exc_info=True)

    async def close(self) -> None:
        await self.http.aclose()
        await self.redis.aclose()
        await self.engine.dispose()


def build_services(settings: Settings) -> Services:
    engine = create_engine(settings.database_url)
    session_factory = create_session_factory(engine)
    # queue payloads are decoded by QueuedJob.from_json
    redis = create_redis(settings.redis_url, decode_responses=False)
    repo = AssetRepository(session_factory)
    storage = ObjectStorage(settings)
    queue = JobQueue(redis, settings.job_queue_key)
    uploads = UploadService(repo, storage, queue, settings, signer=build_signer(settings))
    return Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        redis=redis,
        repo=repo,
        storage=storage,
        queue=queue,
        uploads=uploads,
        http=httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=5.0)),
    )
