from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitUploadIn(BaseModel):
    # Missing fields are reported by the upload service, not by pydantic.
    mime: str = ""
    kind: str = ""
    filename: str = ""
    size: int = 0


class InitUploadOut(CamelModel):
    asset_id: str
    bucket: str
    object_key: str
    presigned_url: str
    headers: dict[str, str] = Field(default_factory=dict)
    expires_in: int


class CompleteUploadIn(CamelModel):
    asset_id: str = ""


class CompleteUploadOut(BaseModel):
    state: str
    message: str | None = None


class AssetOut(CamelModel):
    id: str
    kind: str
    state: str
    filename: str
    mime_type: str
    size: int
    bucket: str
    object_key: str
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    created_at: datetime
    urls: dict[str, Any] = Field(default_factory=dict)


class AssetListOut(BaseModel):
    assets: list[AssetOut] = Field(default_factory=list)
    total: int = 0
