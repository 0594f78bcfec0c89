from __future__ import annotations

import asyncio
import logging
import signal

from app.core.config import settings
from app.core.container import build_services
from app.core.logging import configure_logging
from app.workers.pool import WorkerPool

logger = logging.getLogger(__name__)


async def serve() -> None:
    services = build_services(settings)
    await services.prepare()
    pool = WorkerPool(
        services.queue,
        services.processor(),
        concurrency=settings.worker_concurrency,
        job_timeout=settings.job_timeout_seconds,
        pop_timeout=settings.queue_pop_timeout_seconds,
        error_backoff=settings.queue_error_backoff_seconds,
        tracker=services.repo,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    pool.start()
    logger.info("Media worker running queue=%s", settings.job_queue_key)
    try:
        await stop.wait()
        logger.info("Shutdown signal received")
    finally:
        await pool.stop()
        await services.close()


def main() -> None:
    configure_logging()
    asyncio.run(serve())


if __name__ == "__main__":
    main()
