from __future__ import annotations

import logging

import httpx
from fastapi import HTTPException, Request

from app.core.config import Settings
from app.core.errors import (
    AssetNotFoundError,
    AssetNotReadyError,
    InvalidRequestError,
    MediaError,
    NotAVideoError,
)
from app.services.uploads import UploadService

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[MediaError], int], ...] = (
    (InvalidRequestError, 400),
    (NotAVideoError, 400),
    (AssetNotFoundError, 404),
    (AssetNotReadyError, 202),
)


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.services.uploads


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.services.http


def get_app_settings(request: Request) -> Settings:
    return request.app.state.services.settings


def http_error(exc: Exception, fallback: str) -> HTTPException:
    """Map a service exception to an HTTPException; unknown errors become 500."""
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status, detail=str(exc))
    logger.error("%s: %s", fallback, exc, exc_info=exc)
    return HTTPException(status_code=500, detail=fallback)
