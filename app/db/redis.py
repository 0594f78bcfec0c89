from __future__ import annotations

from redis.asyncio import Redis, from_url


def create_redis(url: str, *, decode_responses: bool = True) -> Redis:
    return from_url(url, encoding="utf-8", decode_responses=decode_responses)
