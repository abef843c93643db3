import uuid

from fastapi import APIRouter, Query

from app.api.deps import DbSessionDep, ResolverDep
from app.api.v1.schemas import ScannedRoomRead, ScannedRoomsRead
from app.services.exports import ExportRecordStore


router = APIRouter(tags=["scanned-rooms"])


@router.get("/scanned-rooms", response_model=ScannedRoomsRead)
def list_scanned_rooms(
    db=DbSessionDep,
    resolver=ResolverDep,
    user_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
):
    records = ExportRecordStore(db).list_ready(user_id=user_id, limit=limit)
    rooms = []
    for record in records:
        glb = resolver.resolve(record.glb_path)
        rooms.append(
            ScannedRoomRead(
                id=record.id,
                user_id=record.user_id,
                scene_id=record.scene_id,
                usdz_path=record.usdz_path,
                json_path=record.json_path,
                glb_path=record.glb_path,
                glb_url=glb.public_url,
                glb_signed_url=glb.signed_url,
                created_at=record.created_at,
            )
        )
    return ScannedRoomsRead(rooms=rooms, count=len(rooms))
