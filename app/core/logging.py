from __future__ import annotations

import logging

from app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    raw = (level or settings.log_level or "").strip().upper()
    if not raw:
        raw = "DEBUG" if settings.app_env == "dev" else "INFO"
    logging.basicConfig(level=getattr(logging, raw, logging.INFO), format=LOG_FORMAT)
    # botocore logs every request at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
