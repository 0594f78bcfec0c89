from __future__ import annotations

import json
import uuid
from dataclasses import dataclass

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.errors import PoisonMessageError, QueueError
from app.models.job import JobType

DEFAULT_QUEUE_KEY = "media:jobs:pending"


@dataclass(slots=True)
class QueuedJob:
    id: str
    asset_id: str
    type: str

    def to_json(self) -> str:
        return json.dumps({"id": self.id, "assetId": self.asset_id, "type": self.type})

    @classmethod
    def from_json(cls, raw: str | bytes) -> "QueuedJob":
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            data = json.loads(raw)
        except UnicodeDecodeError as exc:
            raise PoisonMessageError(f"Job payload is not valid UTF-8: {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise PoisonMessageError(f"Job payload is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise PoisonMessageError("Job payload is not a JSON object")

        fields = {}
        for key in ("id", "assetId", "type"):
            value = data.get(key)
            if not isinstance(value, str) or not value.strip():
                raise PoisonMessageError(f"Job payload missing {key!r}")
            fields[key] = value.strip()
        return cls(id=fields["id"], asset_id=fields["assetId"], type=fields["type"])

    @classmethod
    def new(cls, asset_id: uuid.UUID | str, job_type: JobType) -> "QueuedJob":
        return cls(id=str(uuid.uuid4()), asset_id=str(asset_id), type=job_type.value)


class JobQueue:
    """Single FIFO list in redis: producers RPUSH, consumers BLPOP."""

    def __init__(self, redis: Redis, key: str = DEFAULT_QUEUE_KEY) -> None:
        self.redis = redis
        self.key = key

    async def push(self, job: QueuedJob) -> None:
        try:
            await self.redis.rpush(self.key, job.to_json())
        except RedisError as exc:
            raise QueueError(f"Failed to push job {job.id}") from exc

    async def requeue(self, payload: str | bytes) -> None:
        """Put an already popped payload back at the head of the list."""
        try:
            await self.redis.lpush(self.key, payload)
        except RedisError as exc:
            raise QueueError("Failed to requeue job") from exc

    async def pop(self, timeout: float = 5) -> str | bytes | None:
        try:
            result = await self.redis.blpop([self.key], timeout=timeout)
        except UnicodeDecodeError as exc:
            # only reachable with a decoding client; the payload is already off the list
            raise PoisonMessageError(f"Job payload is not valid UTF-8: {exc}") from exc
        except RedisError as exc:
            raise QueueError("Failed to pop job from queue") from exc
        if not result:
            return None
        _key, payload = result
        return payload

