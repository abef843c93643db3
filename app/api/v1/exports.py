import logging
import secrets
import uuid

from fastapi import APIRouter, Header, HTTPException, Query, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.api.deps import DbSessionDep, DeleterDep, OrchestratorDep, ResolverDep
from app.api.v1.schemas import (
    BlobDeletionRead,
    ConvertRequest,
    ConvertResultRead,
    CronConvertRead,
    DatabaseDeletionRead,
    DeletionRead,
    DirectoryDeletionRead,
    ExportCreate,
    ExportQueuedRead,
    ExportRead,
    ExportWaitRead,
)
from app.core.settings import settings
from app.services.deletion import DeletionReport
from app.services.export_orchestrator import ConvertExportResult, parse_uuid
from app.services.exports import ExportRecordStore


router = APIRouter(tags=["exports"])
logger = logging.getLogger(__name__)


def _convert_read(result: ConvertExportResult) -> ConvertResultRead:
    return ConvertResultRead(
        export_id=result.export_id,
        success=result.success,
        status=result.status,
        glb_path=result.glb_path,
        glb_url=result.glb_url,
        glb_signed_url=result.glb_signed_url,
        error=result.error,
        warning=result.warning,
    )


@router.post("/exports", status_code=202)
async def create_export(
    payload: ExportCreate,
    response: Response,
    orchestrator=OrchestratorDep,
    wait_seconds: float | None = Query(default=None, ge=0),
):
    fields = payload.model_dump()
    if wait_seconds is None:
        record = await run_in_threadpool(lambda: orchestrator.create_export(trigger="background", **fields))
        orchestrator.trigger_background(record.id)
        return ExportQueuedRead(id=record.id, status=record.status)

    timeout = min(wait_seconds, settings.export_wait_seconds_max)
    outcome = await orchestrator.create_export_and_wait(timeout=timeout, **fields)
    response.status_code = 200 if outcome.completed else 202
    return ExportWaitRead(
        id=outcome.record.id,
        status=outcome.status if outcome.completed else "processing",
        completed=bool(outcome.completed),
        conversion=_convert_read(outcome.conversion) if outcome.conversion else None,
    )


@router.post("/exports/convert", response_model=ConvertResultRead)
def convert_export(payload: ConvertRequest, orchestrator=OrchestratorDep):
    if not payload.export_id:
        raise HTTPException(status_code=400, detail="exportId is required")
    export_id = parse_uuid(payload.export_id, "exportId")
    return _convert_read(orchestrator.convert_export(export_id))


@router.get("/exports/convert/next", response_model=CronConvertRead)
def convert_next_export(orchestrator=OrchestratorDep, authorization: str | None = Header(default=None)):
    if settings.cron_secret:
        expected = f"Bearer {settings.cron_secret}"
        if not authorization or not secrets.compare_digest(authorization, expected):
            raise HTTPException(status_code=401, detail="unauthorized")
    result = orchestrator.convert_next_queued()
    if result is None:
        return CronConvertRead(processed=0)
    return CronConvertRead(processed=1, result=_convert_read(result))


@router.get("/exports/{export_id}", response_model=ExportRead)
def get_export(export_id: uuid.UUID, db=DbSessionDep, resolver=ResolverDep):
    record = ExportRecordStore(db).find_by_id(export_id)
    if record is None:
        raise HTTPException(status_code=404, detail="export not found")

    body = ExportRead.model_validate(record)
    usdz = resolver.resolve(record.usdz_path)
    json_doc = resolver.resolve(record.json_path)
    glb = resolver.resolve(record.glb_path)
    return body.model_copy(
        update={
            "usdz_public_url": usdz.public_url,
            "usdz_signed_url": usdz.signed_url,
            "json_public_url": json_doc.public_url,
            "json_signed_url": json_doc.signed_url,
            "glb_public_url": glb.public_url,
            "glb_signed_url": glb.signed_url,
        }
    )


def _deletion_read(report: DeletionReport) -> DeletionRead:
    return DeletionRead(
        success=report.complete,
        message=(
            "Export and all associated resources deleted"
            if report.complete
            else "Export deleted; some associated resources could not be removed"
        ),
        export_id=report.export_id,
        database=DatabaseDeletionRead(
            exports=report.export_row_deleted,
            user_assets=report.dependent_rows_deleted,
            user_assets_removed=report.dependent_rows_removed,
            user_assets_error=report.dependent_rows_error,
        ),
        blobs=[
            BlobDeletionRead(kind=blob.kind, location=blob.location, deleted=blob.deleted, error=blob.error)
            for blob in report.blobs
        ],
        directories=[
            DirectoryDeletionRead(path=d.path, deleted=d.deleted, error=d.error) for d in report.directories
        ],
        summary=report.summary(),
    )


@router.delete("/exports/{export_id}", response_model=DeletionRead)
def delete_export(export_id: uuid.UUID, deleter=DeleterDep):
    report = deleter.delete_export(export_id)
    body = _deletion_read(report)
    return JSONResponse(status_code=200 if report.complete else 206, content=body.model_dump(mode="json"))
