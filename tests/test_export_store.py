import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from app.db.models import ExportRecord
from app.db.session import get_sessionmaker
from app.services.exports import ExportRecordStore


@pytest.fixture()
def db():
    SessionLocal = get_sessionmaker()
    with SessionLocal() as session:
        yield session


def _insert(store, **overrides):
    fields = {"scene_id": "scene-1", "usdz_path": "supabase://scanned-rooms/ios-uploads/a.usdz"}
    fields.update(overrides)
    return store.insert(**fields)


def test_insert_starts_queued(db):
    record = _insert(ExportRecordStore(db), json_path="supabase://scanned-rooms/ios-metadata/a.json")

    assert record.status == "queued"
    assert record.glb_path is None
    assert record.error is None
    assert record.json_path == "supabase://scanned-rooms/ios-metadata/a.json"


def test_claim_is_exclusive(db):
    store = ExportRecordStore(db)
    record = _insert(store)

    assert store.claim_for_processing(record.id) is True
    assert store.claim_for_processing(record.id) is False
    assert store.find_by_id(record.id).status == "processing"


def test_ready_requires_processing_and_a_path(db):
    store = ExportRecordStore(db)
    record = _insert(store)

    assert store.mark_ready(record.id, "supabase://b/p.glb") is False
    with pytest.raises(ValueError):
        store.mark_ready(record.id, "")

    store.claim_for_processing(record.id)
    assert store.mark_ready(record.id, "supabase://b/p.glb") is True
    ready = store.find_by_id(record.id)
    assert (ready.status, ready.glb_path, ready.error) == ("ready", "supabase://b/p.glb", None)
    assert store.claim_for_processing(record.id) is False


def test_failed_jobs_can_be_retried(db):
    store = ExportRecordStore(db)
    record = _insert(store)
    store.claim_for_processing(record.id)
    assert store.mark_failed(record.id, "boom") is True

    failed = store.find_by_id(record.id)
    assert (failed.status, failed.error, failed.glb_path) == ("failed", "boom", None)

    assert store.claim_for_processing(record.id) is True
    retried = store.find_by_id(record.id)
    assert (retried.status, retried.error) == ("processing", None)


def test_database_rejects_ready_without_glb_path(db):
    db.add(ExportRecord(scene_id="s", usdz_path="u.usdz", status="ready"))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_database_rejects_failed_without_error(db):
    db.add(ExportRecord(scene_id="s", usdz_path="u.usdz", status="failed"))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_database_rejects_unknown_status(db):
    db.add(ExportRecord(scene_id="s", usdz_path="u.usdz", status="done"))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_next_queued_is_oldest_first(db):
    store = ExportRecordStore(db)
    first = _insert(store, scene_id="first")
    second = _insert(store, scene_id="second")

    assert store.next_queued().id == first.id
    store.claim_for_processing(first.id)
    assert store.next_queued().id == second.id


def test_list_ready_filters_by_user(db):
    store = ExportRecordStore(db)
    owner = uuid.uuid4()
    mine = _insert(store, user_id=owner)
    other = _insert(store, user_id=uuid.uuid4())
    _insert(store, user_id=owner)
    for record in (mine, other):
        store.claim_for_processing(record.id)
        store.mark_ready(record.id, f"supabase://b/{record.id}.glb")

    assert [r.id for r in store.list_ready(user_id=owner)] == [mine.id]
    assert {r.id for r in store.list_ready()} == {mine.id, other.id}


def test_user_assets_are_removed_with_their_export(db):
    store = ExportRecordStore(db)
    record = _insert(store, user_id=uuid.uuid4())
    asset = store.add_user_asset(record, "supabase://b/a.glb")

    assert asset.metadata_ == {"export_id": str(record.id), "scene_id": "scene-1"}
    assert [a.asset_id for a in store.list_user_assets(record.id)] == [asset.asset_id]
    assert store.delete_user_assets(record.id) == 1
    assert store.delete(record.id) is True
    assert store.delete(record.id) is False
    assert store.find_by_id(record.id) is None
