from __future__ import annotations

from datetime import datetime, timezone
import uuid

from sqlalchemy import delete, desc, select, update
from sqlalchemy.orm import Session

from app.db.models import (
    EXPORT_STATUS_FAILED,
    EXPORT_STATUS_PROCESSING,
    EXPORT_STATUS_QUEUED,
    EXPORT_STATUS_READY,
    ExportRecord,
    UserAsset,
)


CLAIMABLE_STATUSES = (EXPORT_STATUS_QUEUED, EXPORT_STATUS_FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExportRecordStore:
    """Repository for export jobs.

    Every status change is a conditional UPDATE keyed by id, so the
    lifecycle invariants hold no matter how many callers race on a job:
    a row only reaches ``ready`` with a GLB path and ``failed`` with an
    error, and only one caller can move it into ``processing``.
    """

    def __init__(self, db: Session):
        self.db = db

    def insert(
        self,
        *,
        scene_id: str,
        usdz_path: str,
        user_id: uuid.UUID | None = None,
        json_path: str | None = None,
    ) -> ExportRecord:
        now = _utcnow()
        record = ExportRecord(
            scene_id=scene_id,
            usdz_path=usdz_path,
            user_id=user_id,
            json_path=json_path,
            status=EXPORT_STATUS_QUEUED,
            created_at=now,
            updated_at=now,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def find_by_id(self, export_id: uuid.UUID) -> ExportRecord | None:
        return self.db.get(ExportRecord, export_id, populate_existing=True)

    def claim_for_processing(self, export_id: uuid.UUID) -> bool:
        """Move a queued (or failed, for retries) job to processing.

        Returns False when another caller already owns the job or it is
        ready; the caller must then leave it alone.
        """
        result = self.db.execute(
            update(ExportRecord)
            .where(ExportRecord.id == export_id, ExportRecord.status.in_(CLAIMABLE_STATUSES))
            .values(status=EXPORT_STATUS_PROCESSING, error=None, glb_path=None, updated_at=_utcnow())
        )
        self.db.commit()
        return result.rowcount == 1

    def mark_ready(self, export_id: uuid.UUID, glb_path: str) -> bool:
        if not glb_path:
            raise ValueError("glb_path is required to mark an export ready")
        result = self.db.execute(
            update(ExportRecord)
            .where(ExportRecord.id == export_id, ExportRecord.status == EXPORT_STATUS_PROCESSING)
            .values(status=EXPORT_STATUS_READY, glb_path=glb_path, error=None, updated_at=_utcnow())
        )
        self.db.commit()
        return result.rowcount == 1

    def mark_failed(self, export_id: uuid.UUID, error: str) -> bool:
        result = self.db.execute(
            update(ExportRecord)
            .where(ExportRecord.id == export_id, ExportRecord.status == EXPORT_STATUS_PROCESSING)
            .values(
                status=EXPORT_STATUS_FAILED,
                error=error or "conversion failed",
                glb_path=None,
                updated_at=_utcnow(),
            )
        )
        self.db.commit()
        return result.rowcount == 1

    def next_queued(self) -> ExportRecord | None:
        return self.db.execute(
            select(ExportRecord)
            .where(ExportRecord.status == EXPORT_STATUS_QUEUED)
            .order_by(ExportRecord.created_at, ExportRecord.id)
            .limit(1)
        ).scalar_one_or_none()

    def list_ready(self, *, user_id: uuid.UUID | None = None, limit: int = 100) -> list[ExportRecord]:
        stmt = select(ExportRecord).where(
            ExportRecord.status == EXPORT_STATUS_READY,
            ExportRecord.glb_path.is_not(None),
        )
        if user_id is not None:
            stmt = stmt.where(ExportRecord.user_id == user_id)
        stmt = stmt.order_by(desc(ExportRecord.created_at)).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def delete(self, export_id: uuid.UUID) -> bool:
        result = self.db.execute(delete(ExportRecord).where(ExportRecord.id == export_id))
        self.db.commit()
        return result.rowcount == 1

    def add_user_asset(self, record: ExportRecord, url: str) -> UserAsset:
        asset = UserAsset(
            user_id=record.user_id,
            export_id=record.id,
            asset_type="glb",
            url=url,
            metadata_={"export_id": str(record.id), "scene_id": record.scene_id},
        )
        self.db.add(asset)
        self.db.commit()
        self.db.refresh(asset)
        return asset

    def list_user_assets(self, export_id: uuid.UUID) -> list[UserAsset]:
        return list(
            self.db.execute(select(UserAsset).where(UserAsset.export_id == export_id)).scalars().all()
        )

    def delete_user_assets(self, export_id: uuid.UUID) -> int:
        result = self.db.execute(delete(UserAsset).where(UserAsset.export_id == export_id))
        self.db.commit()
        return result.rowcount
