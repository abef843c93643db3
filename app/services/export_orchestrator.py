from __future__ import annotations

from dataclasses import dataclass
import logging
import re
import time
import uuid

from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from app.conversion.engine import ConversionOptions, ConversionResult, convert_usdz_to_glb
from app.conversion.glb import describe_glb
from app.core.exceptions import ExportNotFoundError, ExportValidationError, ObjectNotFoundError
from app.core.metrics import (
    record_conversion_error,
    record_conversion_outcome,
    record_export_created,
    track_conversion,
)
from app.core.request_context import get_request_id, log_context
from app.core.settings import Settings
from app.core.telemetry import trace_span
from app.db.models import EXPORT_STATUS_PROCESSING, EXPORT_STATUS_READY, ExportRecord
from app.services import job_queue
from app.services.exports import ExportRecordStore
from app.services.notifications import ExportNotifier, notify_ready
from app.services.storage import LegacyFileStore, ObjectStore
from app.services.storage_uri import (
    LegacyPath,
    StorageLocation,
    StorageResolver,
    StorageUri,
    build_glb_path,
    join_storage_path,
    locate,
    looks_like_storage_uri,
    sanitize_segment,
    to_uri,
)


logger = logging.getLogger(__name__)

GLB_CONTENT_TYPE = "model/gltf-binary"
LEGACY_GLB_DIR = "models/scanned-rooms"

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def parse_uuid(value: object, field_name: str) -> uuid.UUID:
    """Parse a canonical hyphenated UUID or raise ExportValidationError."""
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str) or not _UUID_RE.match(value.strip()):
        raise ExportValidationError(f"Invalid {field_name} format. Must be a valid UUID.")
    return uuid.UUID(value.strip())


@dataclass(frozen=True)
class ConvertExportResult:
    export_id: uuid.UUID
    success: bool
    status: str
    glb_path: str | None = None
    glb_url: str | None = None
    glb_signed_url: str | None = None
    error: str | None = None
    warning: str | None = None


@dataclass(frozen=True)
class CreateExportResult:
    record: ExportRecord
    completed: bool | None = None
    conversion: ConvertExportResult | None = None

    @property
    def status(self) -> str:
        if self.conversion is not None:
            return self.conversion.status
        return self.record.status


class ExportOrchestrator:
    """Creates export jobs and drives them through conversion.

    Each step opens its own short session, so the orchestrator can run on
    request threads, queue worker threads and deadline-bounded background
    tasks alike.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session],
        object_store: ObjectStore,
        legacy_files: LegacyFileStore,
        resolver: StorageResolver,
        notifier: ExportNotifier,
        config: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._object_store = object_store
        self._legacy_files = legacy_files
        self._resolver = resolver
        self._notifier = notifier
        self._config = config

    # -- creation -----------------------------------------------------------

    def create_export(
        self,
        *,
        scene_id: str | None,
        usdz_path: str | None,
        user_id: str | uuid.UUID | None = None,
        json_path: str | None = None,
        trigger: str = "manual",
    ) -> ExportRecord:
        scene_id = (scene_id or "").strip()
        usdz_path = (usdz_path or "").strip()
        json_path = (json_path or "").strip() or None
        if not scene_id:
            raise ExportValidationError("sceneId is required")
        if not usdz_path:
            raise ExportValidationError("usdzPath is required")
        owner = parse_uuid(user_id, "userId") if user_id else None
        for name, value in (("usdzPath", usdz_path), ("jsonPath", json_path)):
            if looks_like_storage_uri(value) and not isinstance(locate(value), StorageUri):
                raise ExportValidationError(f"Invalid {name}: storage URI needs a bucket and object path")

        with self._session_factory() as db:
            record = ExportRecordStore(db).insert(
                scene_id=scene_id,
                usdz_path=usdz_path,
                user_id=owner,
                json_path=json_path,
            )
        record_export_created(trigger)
        logger.info(
            "export_created",
            extra={"export_id": str(record.id), "scene_id": scene_id, "trigger": trigger},
        )
        return record

    def trigger_background(self, export_id: uuid.UUID) -> bool:
        """Queue a conversion without waiting for it.

        A queue that cannot accept the job is logged; the record stays
        ``queued`` for a later retry.
        """
        try:
            job_queue.enqueue_job(
                "convert_export",
                {"export_id": str(export_id)},
                lambda _job: self.convert_export(export_id),
                request_id=get_request_id(),
            )
        except RuntimeError:
            logger.exception("export_trigger_failed", extra={"export_id": str(export_id)})
            return False
        return True

    async def create_export_and_wait(self, *, timeout: float, **fields) -> CreateExportResult:
        """Create a job, then wait up to ``timeout`` seconds for its conversion.

        On timeout the result has ``completed=False``; the conversion keeps
        running and records its own outcome.
        """
        record = await run_in_threadpool(lambda: self.create_export(trigger="bounded_wait", **fields))
        completed, outcome = await job_queue.run_with_deadline(
            lambda: self.convert_export(record.id),
            timeout,
        )
        if not completed:
            logger.info(
                "export_wait_timed_out",
                extra={"export_id": str(record.id), "timeout_seconds": timeout},
            )
            return CreateExportResult(record=record, completed=False)
        return CreateExportResult(record=record, completed=True, conversion=outcome)

    # -- conversion ---------------------------------------------------------

    def convert_next_queued(self) -> ConvertExportResult | None:
        with self._session_factory() as db:
            record = ExportRecordStore(db).next_queued()
        if record is None:
            return None
        return self.convert_export(record.id)

    def convert_export(self, export_id: uuid.UUID) -> ConvertExportResult:
        with self._session_factory() as db:
            store = ExportRecordStore(db)
            claimed = store.claim_for_processing(export_id)
            record = store.find_by_id(export_id)
        if record is None:
            raise ExportNotFoundError(export_id)
        if not claimed:
            return self._unclaimed_result(record)

        with log_context(export_id=export_id, scene_id=record.scene_id), trace_span(
            "export.convert", export_id=export_id, scene_id=record.scene_id
        ):
            started = time.perf_counter()
            try:
                return self._run_conversion(record)
            except Exception as exc:  # noqa: BLE001
                logger.exception("export_conversion_crashed")
                message = str(exc) or exc.__class__.__name__
                self._fail(record.id, message)
                return ConvertExportResult(export_id=record.id, success=False, status="failed", error=message)
            finally:
                logger.info(
                    "export_conversion_finished",
                    extra={"duration_ms": (time.perf_counter() - started) * 1000},
                )

    def _unclaimed_result(self, record: ExportRecord) -> ConvertExportResult:
        if record.status == EXPORT_STATUS_READY:
            logger.info("export_already_ready", extra={"export_id": str(record.id)})
            resolved = self._resolver.resolve(record.glb_path)
            return ConvertExportResult(
                export_id=record.id,
                success=True,
                status=record.status,
                glb_path=record.glb_path,
                glb_url=resolved.public_url,
                glb_signed_url=resolved.signed_url,
            )
        logger.info(
            "export_claim_skipped",
            extra={"export_id": str(record.id), "status": record.status},
        )
        record_conversion_outcome("skipped")
        return ConvertExportResult(
            export_id=record.id,
            success=False,
            status=record.status,
            error="export is already being processed" if record.status == EXPORT_STATUS_PROCESSING else record.error,
        )

    def _run_conversion(self, record: ExportRecord) -> ConvertExportResult:
        source = locate(record.usdz_path)
        if source is None:
            raise ObjectNotFoundError(record.usdz_path or "<empty usdz_path>")
        usdz_bytes = self._read(source)

        room_plan_bytes = None
        json_location = locate(record.json_path)
        if json_location is not None:
            try:
                room_plan_bytes = self._read(json_location)
            except (ObjectNotFoundError, OSError) as exc:
                logger.warning("roomplan_download_failed", extra={"json_path": record.json_path, "error": str(exc)})

        file_name = source.path.rsplit("/", 1)[-1] if isinstance(source, StorageUri) else source.value.rsplit("/", 1)[-1]
        options = ConversionOptions(
            max_file_size=self._config.conversion_max_file_size,
            enable_fallback=self._config.conversion_enable_fallback,
            room_plan_json=room_plan_bytes,
        )
        with track_conversion("fallback" if options.enable_fallback else "strict"):
            result: ConversionResult = convert_usdz_to_glb(usdz_bytes, file_name, options)

        if not result.success or result.glb_buffer is None:
            error = result.error
            message = error.describe() if error is not None else "conversion failed"
            if error is not None:
                record_conversion_error(error.code.value)
            self._fail(record.id, message)
            return ConvertExportResult(export_id=record.id, success=False, status="failed", error=message)

        logger.info("glb_generated", extra=describe_glb(result.glb_buffer))
        glb_path = self._store_glb(record, source, result.glb_buffer)

        with self._session_factory() as db:
            store = ExportRecordStore(db)
            if not store.mark_ready(record.id, glb_path):
                current = store.find_by_id(record.id)
                logger.warning(
                    "export_ready_transition_lost",
                    extra={"status": current.status if current else None},
                )
                if current is None or current.glb_path != glb_path:
                    self._discard_glb(glb_path)
                return ConvertExportResult(
                    export_id=record.id,
                    success=False,
                    status=current.status if current else "deleted",
                    error="export changed while converting",
                )
            try:
                store.add_user_asset(record, glb_path)
            except Exception:  # noqa: BLE001
                db.rollback()
                logger.exception("user_asset_record_failed")

        resolved = self._resolver.resolve(glb_path)
        notify_ready(self._notifier, record.id, resolved.public_url or glb_path)
        record_conversion_outcome("fallback" if result.used_fallback else "ready")
        return ConvertExportResult(
            export_id=record.id,
            success=True,
            status=EXPORT_STATUS_READY,
            glb_path=glb_path,
            glb_url=resolved.public_url,
            glb_signed_url=resolved.signed_url,
            warning=result.warning,
        )

    def _read(self, location: StorageLocation) -> bytes:
        if isinstance(location, StorageUri):
            return self._object_store.download(location.bucket, location.path)
        if isinstance(location, LegacyPath) and location.is_absolute_url:
            raise ObjectNotFoundError(location.value)
        return self._legacy_files.read(location.value)

    def _glb_file_name(self, record: ExportRecord) -> str:
        return f"{record.id}-{sanitize_segment(record.scene_id)}.glb"

    def _store_glb(self, record: ExportRecord, source: StorageLocation, data: bytes) -> str:
        file_name = self._glb_file_name(record)
        if isinstance(source, StorageUri):
            path = build_glb_path(self._config.storage_glb_prefix, record.user_id, record.scene_id, file_name)
            self._object_store.upload(source.bucket, path, data, GLB_CONTENT_TYPE)
            return to_uri(source.bucket, path)
        owner = sanitize_segment(str(record.user_id)) if record.user_id else "anonymous"
        return self._legacy_files.write(join_storage_path(LEGACY_GLB_DIR, owner, file_name), data)

    def _discard_glb(self, glb_path: str) -> None:
        """Best-effort removal of a GLB whose export no longer wants it."""
        location = locate(glb_path)
        try:
            if isinstance(location, StorageUri):
                self._object_store.delete(location.bucket, [location.path])
            elif location is not None:
                self._legacy_files.delete(location.value)
        except Exception:  # noqa: BLE001
            logger.exception("orphan_glb_cleanup_failed", extra={"glb_path": glb_path})
            return
        logger.info("orphan_glb_removed", extra={"glb_path": glb_path})

    def _fail(self, export_id: uuid.UUID, message: str) -> None:
        try:
            with self._session_factory() as db:
                if not ExportRecordStore(db).mark_failed(export_id, message):
                    logger.warning("export_failed_transition_lost", extra={"export_id": str(export_id)})
        except Exception:  # noqa: BLE001
            logger.exception("export_mark_failed_error", extra={"export_id": str(export_id)})
        record_conversion_outcome("failed")
        logger.warning("export_failed", extra={"export_id": str(export_id), "error": message})
