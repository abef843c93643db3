from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
import logging
import uuid

from sqlalchemy.orm import Session, sessionmaker

from app.core.exceptions import ExportNotFoundError, ObjectNotFoundError, StorageError
from app.core.metrics import record_deletion
from app.core.request_context import log_context
from app.services.exports import ExportRecordStore
from app.services.storage import LegacyFileStore, ObjectStore
from app.services.storage_uri import LegacyPath, StorageUri, locate


logger = logging.getLogger(__name__)


@dataclass
class BlobDeletion:
    kind: str
    location: str
    deleted: bool
    error: str | None = None


@dataclass
class DirectoryDeletion:
    path: str
    deleted: bool
    error: str | None = None


@dataclass
class DeletionReport:
    export_id: uuid.UUID
    export_row_deleted: bool = False
    dependent_rows_deleted: bool = False
    dependent_rows_removed: int = 0
    dependent_rows_error: str | None = None
    blobs: list[BlobDeletion] = field(default_factory=list)
    directories: list[DirectoryDeletion] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return (
            self.export_row_deleted
            and self.dependent_rows_deleted
            and all(blob.deleted for blob in self.blobs)
        )

    def summary(self) -> dict[str, int]:
        return {
            "blobs_attempted": len(self.blobs),
            "blobs_deleted": sum(1 for blob in self.blobs if blob.deleted),
            "directories_removed": sum(1 for d in self.directories if d.deleted),
            "dependent_rows_removed": self.dependent_rows_removed,
        }


class ExportDeleter:
    """Removes an export and everything it produced.

    Order: dependent rows (best-effort), the export row (must succeed),
    then blobs and empty legacy directories (best-effort). Removing the row
    before the files means an interrupted cleanup leaves orphaned files,
    never a live job pointing at missing ones.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session],
        object_store: ObjectStore,
        legacy_files: LegacyFileStore,
    ) -> None:
        self._session_factory = session_factory
        self._object_store = object_store
        self._legacy_files = legacy_files

    def delete_export(self, export_id: uuid.UUID) -> DeletionReport:
        with self._session_factory() as db:
            record = ExportRecordStore(db).find_by_id(export_id)
        if record is None:
            raise ExportNotFoundError(export_id)

        report = DeletionReport(export_id=export_id)
        with log_context(export_id=export_id, scene_id=record.scene_id):
            self._delete_dependents(report)

            with self._session_factory() as db:
                if not ExportRecordStore(db).delete(export_id):
                    raise ExportNotFoundError(export_id)
            report.export_row_deleted = True

            blobs = [
                ("usdz", record.usdz_path),
                ("json", record.json_path),
                ("glb", record.glb_path),
            ]
            self._delete_blobs(report, [(kind, raw) for kind, raw in blobs if raw])

            record_deletion("complete" if report.complete else "partial")
            logger.info(
                "export_deleted",
                extra={"complete": report.complete, **report.summary()},
            )
        return report

    def _delete_dependents(self, report: DeletionReport) -> None:
        try:
            with self._session_factory() as db:
                report.dependent_rows_removed = ExportRecordStore(db).delete_user_assets(report.export_id)
            report.dependent_rows_deleted = True
        except Exception as exc:  # noqa: BLE001
            logger.exception("export_dependents_delete_failed")
            report.dependent_rows_error = str(exc)

    def _delete_blobs(self, report: DeletionReport, blobs: list[tuple[str, str]]) -> None:
        by_bucket: dict[str, list[tuple[str, str, StorageUri]]] = defaultdict(list)
        legacy: list[tuple[str, str, LegacyPath]] = []
        for kind, raw in blobs:
            location = locate(raw)
            if isinstance(location, StorageUri):
                by_bucket[location.bucket].append((kind, raw, location))
            elif isinstance(location, LegacyPath):
                legacy.append((kind, raw, location))

        for bucket, entries in by_bucket.items():
            paths = [location.path for _, _, location in entries]
            try:
                removed = set(self._object_store.delete(bucket, paths))
                error = None
            except StorageError as exc:
                logger.warning("export_blob_delete_failed", extra={"bucket": bucket, "error": str(exc)})
                removed = set()
                error = str(exc)
            for kind, raw, location in entries:
                deleted = location.path in removed
                report.blobs.append(
                    BlobDeletion(
                        kind=kind,
                        location=raw,
                        deleted=deleted,
                        error=None if deleted else (error or "object was not removed"),
                    )
                )

        pruned: set[str] = set()
        for kind, raw, location in legacy:
            if location.is_absolute_url:
                report.blobs.append(BlobDeletion(kind=kind, location=raw, deleted=False, error="remote URL not managed"))
                continue
            try:
                deleted = self._legacy_files.delete(location.value)
                error = None if deleted else "file not found"
            except (ObjectNotFoundError, OSError) as exc:
                deleted = False
                error = str(exc)
            report.blobs.append(BlobDeletion(kind=kind, location=raw, deleted=deleted, error=error))
            if deleted:
                self._prune(report, location.value, pruned)

    def _prune(self, report: DeletionReport, path: str, pruned: set[str]) -> None:
        try:
            removed = self._legacy_files.prune_parent(path)
        except OSError as exc:
            logger.warning("export_directory_prune_failed", extra={"path": path, "error": str(exc)})
            report.directories.append(DirectoryDeletion(path=path, deleted=False, error=str(exc)))
            return
        if removed and removed not in pruned:
            pruned.add(removed)
            report.directories.append(DirectoryDeletion(path=removed, deleted=True))
