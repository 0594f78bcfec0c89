from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy.orm import Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enum_check(column: str, values: type[Enum], name: str) -> CheckConstraint:
    quoted = ",".join(f"'{v.value}'" for v in values)
    return CheckConstraint(f"{column} in ({quoted})", name=name)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    # also bumped by the update_assets_updated_at trigger
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
