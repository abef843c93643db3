from datetime import datetime
import uuid

from pydantic import BaseModel, ConfigDict, Field


class ExportCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    scene_id: str | None = Field(default=None, alias="sceneId", max_length=255)
    usdz_path: str | None = Field(default=None, alias="usdzPath")
    user_id: str | None = Field(default=None, alias="userId")
    json_path: str | None = Field(default=None, alias="jsonPath")


class ExportQueuedRead(BaseModel):
    id: uuid.UUID
    status: str
    message: str = "Export queued successfully"


class ExportRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID | None
    scene_id: str
    usdz_path: str
    json_path: str | None
    glb_path: str | None
    status: str
    error: str | None
    created_at: datetime
    updated_at: datetime

    usdz_public_url: str | None = None
    usdz_signed_url: str | None = None
    json_public_url: str | None = None
    json_signed_url: str | None = None
    glb_public_url: str | None = None
    glb_signed_url: str | None = None

    model_config = {"from_attributes": True}


class ConvertRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    export_id: str | None = Field(default=None, alias="exportId")


class ConvertResultRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    export_id: uuid.UUID = Field(alias="exportId")
    success: bool
    status: str
    glb_path: str | None = Field(default=None, alias="glbPath")
    glb_url: str | None = Field(default=None, alias="glbUrl")
    glb_signed_url: str | None = Field(default=None, alias="glbSignedUrl")
    error: str | None = None
    warning: str | None = None


class ExportWaitRead(BaseModel):
    id: uuid.UUID
    status: str
    completed: bool
    conversion: ConvertResultRead | None = None


class CronConvertRead(BaseModel):
    processed: int
    result: ConvertResultRead | None = None


class DatabaseDeletionRead(BaseModel):
    exports: bool
    user_assets: bool
    user_assets_removed: int
    user_assets_error: str | None = None


class BlobDeletionRead(BaseModel):
    kind: str
    location: str
    deleted: bool
    error: str | None = None


class DirectoryDeletionRead(BaseModel):
    path: str
    deleted: bool
    error: str | None = None


class DeletionRead(BaseModel):
    success: bool
    message: str
    export_id: uuid.UUID
    database: DatabaseDeletionRead
    blobs: list[BlobDeletionRead]
    directories: list[DirectoryDeletionRead]
    summary: dict[str, int]


class ScannedRoomRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID | None
    scene_id: str
    usdz_path: str
    json_path: str | None
    glb_path: str
    glb_url: str | None
    glb_signed_url: str | None
    created_at: datetime


class ScannedRoomsRead(BaseModel):
    rooms: list[ScannedRoomRead]
    count: int


class UploadRead(BaseModel):
    message: str
    export_id: uuid.UUID
    status: str
    scene_id: str
    usdz_path: str
    json_path: str | None
    usdz_url: str | None
    json_url: str | None
