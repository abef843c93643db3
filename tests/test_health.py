import logging

import pytest


@pytest.mark.anyio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "storage_backend": "local"}


@pytest.mark.anyio
async def test_metrics_exposes_export_counters(client, put_object, usdz_bytes):
    usdz_path = put_object("ios-uploads/anonymous/m/m.usdz", usdz_bytes)
    await client.post("/v1/exports/convert", json={"exportId": "00000000-0000-0000-0000-000000000000"})
    await client.post("/v1/exports", params={"wait_seconds": 10}, json={"sceneId": "m", "usdzPath": usdz_path})

    resp = await client.get("/metrics")
    assert resp.status_code == 200
    text = resp.text
    assert 'roomscan_exports_created_total{trigger="bounded_wait"}' in text
    assert "roomscan_conversion_duration_seconds_bucket" in text
    assert 'roomscan_storage_operations_total{operation="upload",status="success"}' in text


@pytest.mark.anyio
async def test_request_id_is_echoed(client):
    resp = await client.get("/health", headers={"x-request-id": "req-123"})
    assert resp.headers["x-request-id"] == "req-123"


class _Collect(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.INFO)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.mark.anyio
async def test_request_complete_logs_status_without_export_field(client, put_object, usdz_bytes):
    handler = _Collect()
    main_logger = logging.getLogger("app.main")
    main_logger.addHandler(handler)
    try:
        usdz_path = put_object("ios-uploads/anonymous/l/l.usdz", usdz_bytes)
        await client.post("/v1/exports", params={"wait_seconds": 10}, json={"sceneId": "l", "usdzPath": usdz_path})
    finally:
        main_logger.removeHandler(handler)

    completed = [record for record in handler.records if record.getMessage() == "request_complete"]
    assert len(completed) == 1
    assert completed[0].status == 200
    assert completed[0].path == "/v1/exports"
    assert getattr(completed[0], "export_id", None) in (None, "")
