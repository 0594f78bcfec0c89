from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.asset import Asset, AssetMeta, AssetState, AssetVariant
from app.models.common import utcnow
from app.models.job import JobState, ProcessingJob


@dataclass(slots=True)
class VariantRecord:
    variant_type: str
    path: str
    mime_type: str
    width: int | None = None
    height: int | None = None
    bitrate: int | None = None
    size_bytes: int | None = None


class AssetRepository:
    """Persistence for assets, their metadata, renditions and job records.

    State changes that race with other writers go through
    :meth:`transition_state`, which only updates a row still in the expected
    state.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def create_asset(
        self,
        *,
        asset_id: uuid.UUID,
        kind: str,
        bucket: str,
        object_key: str,
        filename: str,
        mime_type: str,
        size_bytes: int,
    ) -> Asset:
        row = Asset(
            id=asset_id,
            kind=kind,
            state=AssetState.UPLOADING.value,
            bucket=bucket,
            object_key=object_key,
            filename=filename,
            mime_type=mime_type,
            size_bytes=size_bytes,
        )
        async with self.session_factory() as db:
            db.add(row)
            await db.commit()
            await db.refresh(row)
        return row

    async def get_asset(self, asset_id: uuid.UUID) -> Asset | None:
        async with self.session_factory() as db:
            return (await db.execute(select(Asset).where(Asset.id == asset_id))).scalar_one_or_none()

    async def get_asset_with_meta(self, asset_id: uuid.UUID) -> tuple[Asset, AssetMeta | None] | None:
        async with self.session_factory() as db:
            row = (
                await db.execute(
                    select(Asset, AssetMeta)
                    .outerjoin(AssetMeta, AssetMeta.asset_id == Asset.id)
                    .where(Asset.id == asset_id)
                )
            ).first()
        if row is None:
            return None
        return row[0], row[1]

    async def list_recent(self, limit: int) -> list[tuple[Asset, AssetMeta | None]]:
        async with self.session_factory() as db:
            rows = (
                await db.execute(
                    select(Asset, AssetMeta)
                    .outerjoin(AssetMeta, AssetMeta.asset_id == Asset.id)
                    .order_by(Asset.created_at.desc())
                    .limit(limit)
                )
            ).all()
        return [(asset, meta) for asset, meta in rows]

    async def transition_state(self, asset_id: uuid.UUID, from_state: AssetState, to_state: AssetState) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                update(Asset)
                .where(Asset.id == asset_id, Asset.state == from_state.value)
                .values(state=to_state.value, updated_at=utcnow())
            )
            await db.commit()
        return result.rowcount > 0

    async def set_state(self, asset_id: uuid.UUID, state: AssetState) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(Asset).where(Asset.id == asset_id).values(state=state.value, updated_at=utcnow())
            )
            await db.commit()

    async def delete_asset(self, asset_id: uuid.UUID) -> bool:
        # meta, variants, tags, usage and jobs go with it via ON DELETE CASCADE
        async with self.session_factory() as db:
            result = await db.execute(delete(Asset).where(Asset.id == asset_id))
            await db.commit()
        return result.rowcount > 0

    async def upsert_meta(
        self,
        asset_id: uuid.UUID,
        *,
        width: int | None,
        height: int | None,
        duration_seconds: float | None,
        codec: str | None,
        bitrate: int | None = None,
        exif: dict | None = None,
    ) -> None:
        duration = None if duration_seconds is None else Decimal(str(round(duration_seconds, 2)))
        values = {
            "asset_id": asset_id,
            "width": width,
            "height": height,
            "duration_seconds": duration,
            "codec": codec,
            "bitrate": bitrate,
            "exif": exif,
        }
        stmt = pg_insert(AssetMeta).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[AssetMeta.asset_id],
            set_={k: stmt.excluded[k] for k in values if k != "asset_id"},
        )
        async with self.session_factory() as db:
            await db.execute(stmt)
            await db.commit()

    async def add_variants(self, asset_id: uuid.UUID, variants: list[VariantRecord]) -> None:
        if not variants:
            return
        async with self.session_factory() as db:
            for v in variants:
                db.add(
                    AssetVariant(
                        asset_id=asset_id,
                        variant_type=v.variant_type,
                        path=v.path,
                        mime_type=v.mime_type,
                        width=v.width,
                        height=v.height,
                        bitrate=v.bitrate,
                        size_bytes=v.size_bytes,
                    )
                )
            await db.commit()

    async def create_job(self, *, job_id: uuid.UUID, asset_id: uuid.UUID, job_type: str) -> None:
        async with self.session_factory() as db:
            db.add(
                ProcessingJob(
                    id=job_id,
                    asset_id=asset_id,
                    job_type=job_type,
                    state=JobState.PENDING.value,
                )
            )
            await db.commit()

    async def mark_job_started(self, job_id: uuid.UUID) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                update(ProcessingJob)
                .where(ProcessingJob.id == job_id)
                .values(
                    state=JobState.PROCESSING.value,
                    attempts=ProcessingJob.attempts + 1,
                    started_at=utcnow(),
                )
            )
            await db.commit()
        return result.rowcount > 0

    async def mark_job_finished(self, job_id: uuid.UUID, error: str | None = None) -> bool:
        state = JobState.FAILED if error else JobState.COMPLETED
        async with self.session_factory() as db:
            result = await db.execute(
                update(ProcessingJob)
                .where(ProcessingJob.id == job_id)
                .values(state=state.value, error_message=error, completed_at=utcnow())
            )
            await db.commit()
        return result.rowcount > 0
