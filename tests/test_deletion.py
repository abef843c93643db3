import uuid

import pytest

from app.core.exceptions import StorageError
from app.db.session import get_sessionmaker
from app.services import job_queue
from app.services.exports import ExportRecordStore
from app.services.storage import get_legacy_store, get_object_store


BUCKET = "scanned-rooms"


async def _ready_export(client, put_object, usdz_bytes, room_plan_bytes):
    usdz_path = put_object("ios-uploads/anonymous/scene-c/c.usdz", usdz_bytes)
    json_path = put_object("ios-metadata/anonymous/scene-c/c.json", room_plan_bytes, "application/json")
    resp = await client.post(
        "/v1/exports",
        json={"sceneId": "scene-c", "usdzPath": usdz_path, "jsonPath": json_path},
    )
    await job_queue.wait_idle()
    export = (await client.get(f"/v1/exports/{resp.json()['id']}")).json()
    assert export["status"] == "ready"
    return export


@pytest.mark.anyio
async def test_delete_removes_rows_and_blobs(client, put_object, usdz_bytes, room_plan_bytes):
    export = await _ready_export(client, put_object, usdz_bytes, room_plan_bytes)

    resp = await client.delete(f"/v1/exports/{export['id']}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["database"] == {
        "exports": True,
        "user_assets": True,
        "user_assets_removed": 1,
        "user_assets_error": None,
    }
    assert {blob["kind"]: blob["deleted"] for blob in body["blobs"]} == {"usdz": True, "json": True, "glb": True}
    assert body["summary"] == {
        "blobs_attempted": 3,
        "blobs_deleted": 3,
        "directories_removed": 0,
        "dependent_rows_removed": 1,
    }

    assert (await client.get(f"/v1/exports/{export['id']}")).status_code == 404
    bucket_dir = get_object_store().root_dir / BUCKET
    assert not (bucket_dir / "ios-uploads" / "anonymous" / "scene-c" / "c.usdz").exists()
    assert not list((bucket_dir / "processed-glb").rglob("*.glb"))


@pytest.mark.anyio
async def test_partial_blob_deletion_returns_206(client, put_object, usdz_bytes, room_plan_bytes, monkeypatch):
    export = await _ready_export(client, put_object, usdz_bytes, room_plan_bytes)
    store = get_object_store()
    real_delete = store.delete

    def delete_all_but_glb(bucket, paths):
        return real_delete(bucket, [path for path in paths if not path.endswith(".glb")])

    monkeypatch.setattr(store, "delete", delete_all_but_glb)

    resp = await client.delete(f"/v1/exports/{export['id']}")
    assert resp.status_code == 206
    body = resp.json()
    assert body["success"] is False
    assert body["database"]["exports"] is True
    glb = next(blob for blob in body["blobs"] if blob["kind"] == "glb")
    assert glb == {
        "kind": "glb",
        "location": export["glb_path"],
        "deleted": False,
        "error": "object was not removed",
    }
    assert body["summary"]["blobs_deleted"] == 2

    assert (await client.get(f"/v1/exports/{export['id']}")).status_code == 404


@pytest.mark.anyio
async def test_storage_outage_still_deletes_the_row(client, put_object, usdz_bytes, room_plan_bytes, monkeypatch):
    export = await _ready_export(client, put_object, usdz_bytes, room_plan_bytes)

    def unavailable(bucket, paths):
        raise StorageError("storage unavailable")

    monkeypatch.setattr(get_object_store(), "delete", unavailable)

    resp = await client.delete(f"/v1/exports/{export['id']}")
    assert resp.status_code == 206
    body = resp.json()
    assert body["database"]["exports"] is True
    assert all(blob["error"] == "storage unavailable" for blob in body["blobs"])
    assert (await client.get(f"/v1/exports/{export['id']}")).status_code == 404


@pytest.mark.anyio
async def test_legacy_files_and_empty_directories_are_removed(client, usdz_bytes):
    legacy = get_legacy_store()
    usdz_path = legacy.write("scans/owner-1/legacy.usdz", usdz_bytes)
    with get_sessionmaker()() as db:
        record = ExportRecordStore(db).insert(scene_id="legacy", usdz_path=usdz_path)
    converted = (await client.post("/v1/exports/convert", json={"exportId": str(record.id)})).json()
    assert converted["status"] == "ready"

    resp = await client.delete(f"/v1/exports/{record.id}")
    assert resp.status_code == 200
    body = resp.json()
    assert sorted(d["path"] for d in body["directories"]) == [
        "models/scanned-rooms/anonymous",
        "scans/owner-1",
    ]
    assert body["summary"]["directories_removed"] == 2
    assert not legacy.full_path(usdz_path).exists()


@pytest.mark.anyio
async def test_remote_urls_are_reported_not_deleted(client):
    with get_sessionmaker()() as db:
        record = ExportRecordStore(db).insert(scene_id="remote", usdz_path="https://cdn.example/scan.usdz")

    resp = await client.delete(f"/v1/exports/{record.id}")
    assert resp.status_code == 206
    assert resp.json()["blobs"] == [
        {
            "kind": "usdz",
            "location": "https://cdn.example/scan.usdz",
            "deleted": False,
            "error": "remote URL not managed",
        }
    ]


@pytest.mark.anyio
async def test_delete_unknown_export_is_404(client):
    resp = await client.delete(f"/v1/exports/{uuid.uuid4()}")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "export not found"
