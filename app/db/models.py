from __future__ import annotations

from datetime import datetime, timezone
import uuid

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql.sqltypes import Uuid

from app.db.base import Base


EXPORT_STATUS_QUEUED = "queued"
EXPORT_STATUS_PROCESSING = "processing"
EXPORT_STATUS_READY = "ready"
EXPORT_STATUS_FAILED = "failed"

EXPORT_STATUSES = (
    EXPORT_STATUS_QUEUED,
    EXPORT_STATUS_PROCESSING,
    EXPORT_STATUS_READY,
    EXPORT_STATUS_FAILED,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExportRecord(Base):
    """One USDZ to GLB conversion job."""

    __tablename__ = "exports"
    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'processing', 'ready', 'failed')",
            name="ck_exports_status",
        ),
        CheckConstraint("(status = 'ready') = (glb_path IS NOT NULL)", name="ck_exports_glb_path_ready"),
        CheckConstraint("(status = 'failed') = (error IS NOT NULL)", name="ck_exports_error_failed"),
        Index("ix_exports_status_created_at", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    scene_id: Mapped[str] = mapped_column(String(255), nullable=False)
    usdz_path: Mapped[str] = mapped_column(Text, nullable=False)
    json_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    glb_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=EXPORT_STATUS_QUEUED)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class UserAsset(Base):
    """Asset derived from an export (the published GLB), owned by a user."""

    __tablename__ = "user_assets"

    asset_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    export_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    asset_type: Mapped[str] = mapped_column(String(32), nullable=False, default="glb")
    url: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
