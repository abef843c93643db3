import json
import logging
import time
import uuid

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from starlette.concurrency import run_in_threadpool

from app.api.deps import OrchestratorDep, ResolverDep
from app.api.v1.schemas import UploadRead
from app.core.settings import settings
from app.services.export_orchestrator import parse_uuid
from app.services.storage import get_object_store
from app.services.storage_uri import build_ios_upload_path, build_json_metadata_path, sanitize_segment, to_uri


router = APIRouter(tags=["uploads"])
logger = logging.getLogger(__name__)

USDZ_CONTENT_TYPES = {"model/vnd.usdz+zip", "model/vnd.pixar.usd", "model/usd"}
JSON_CONTENT_TYPES = {"application/json", "text/json"}


def _is_usdz(upload: UploadFile) -> bool:
    name = (upload.filename or "").lower()
    return upload.content_type in USDZ_CONTENT_TYPES or name.endswith(".usdz")


def _is_json(upload: UploadFile) -> bool:
    name = (upload.filename or "").lower()
    return upload.content_type in JSON_CONTENT_TYPES or name.endswith(".json")


def _base_name(file_name: str | None, default: str) -> str:
    stem = (file_name or default).rsplit("/", 1)[-1].rsplit(".", 1)[0]
    return sanitize_segment(stem) or default


@router.post("/uploads/usdz", response_model=UploadRead, status_code=202)
async def upload_usdz(
    file: UploadFile = File(...),
    metadata: UploadFile | None = File(default=None),
    user_id: str | None = Form(default=None),
    scene_id: str | None = Form(default=None),
    source: str = Form(default="ios"),
    orchestrator=OrchestratorDep,
    resolver=ResolverDep,
):
    if not _is_usdz(file):
        raise HTTPException(status_code=400, detail="Invalid file type. Expected a .usdz file.")
    owner = parse_uuid(user_id, "userId") if user_id else None

    usdz_bytes = await file.read()
    if not usdz_bytes:
        raise HTTPException(status_code=400, detail="USDZ file is empty")

    json_bytes = None
    if metadata is not None and (metadata.filename or metadata.size):
        if not _is_json(metadata):
            raise HTTPException(status_code=400, detail="Invalid metadata file type. Expected JSON.")
        json_bytes = await metadata.read()
        try:
            json.loads(json_bytes)
        except (UnicodeDecodeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail="Metadata file is not valid JSON") from exc

    timestamp = int(time.time() * 1000)
    scene = (scene_id or "").strip() or f"room-scan-{timestamp}"
    token = uuid.uuid4()
    base = _base_name(file.filename, "scan")
    stem = f"{token}-{sanitize_segment(source)}-{timestamp}-{base}"

    store = get_object_store()
    bucket = settings.storage_bucket
    usdz_object = build_ios_upload_path(settings.storage_ios_prefix, owner, scene, f"{stem}.usdz")
    await run_in_threadpool(store.upload, bucket, usdz_object, usdz_bytes, "model/vnd.usdz+zip")
    usdz_uri = to_uri(bucket, usdz_object)

    json_uri = None
    if json_bytes is not None:
        json_object = build_json_metadata_path(settings.storage_json_prefix, owner, scene, f"{stem}.json")
        await run_in_threadpool(store.upload, bucket, json_object, json_bytes, "application/json")
        json_uri = to_uri(bucket, json_object)

    record = await run_in_threadpool(
        lambda: orchestrator.create_export(
            scene_id=scene,
            usdz_path=usdz_uri,
            user_id=owner,
            json_path=json_uri,
            trigger="upload",
        )
    )
    orchestrator.trigger_background(record.id)
    logger.info(
        "usdz_uploaded",
        extra={"export_id": str(record.id), "size_bytes": len(usdz_bytes), "has_metadata": json_uri is not None},
    )
    return UploadRead(
        message="Upload stored; conversion queued",
        export_id=record.id,
        status=record.status,
        scene_id=scene,
        usdz_path=usdz_uri,
        json_path=json_uri,
        usdz_url=resolver.resolve(usdz_uri, include_signed=False).public_url,
        json_url=resolver.resolve(json_uri, include_signed=False).public_url if json_uri else None,
    )
