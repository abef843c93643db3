import importlib.util
import io
import json
import zipfile

import pytest
import httpx

from app.core import settings as settings_module
from app.db.base import Base
from app.db.session import get_engine, init_engine
from app.main import app
from app.services.notifications import init_notifier
from app.services.storage import get_object_store, init_storage


requires_pxr = pytest.mark.skipif(importlib.util.find_spec("pxr") is None, reason="usd-core not installed")


@pytest.fixture
def anyio_backend():
    return "asyncio"


ROOM_USDA = """#usda 1.0
(
    defaultPrim = "Room"
    metersPerUnit = 1
    upAxis = "Y"
)

def Xform "Room"
{
    def Scope "Materials"
    {
        def Material "WallMaterial"
        {
            def Shader "PreviewSurface"
            {
                uniform token info:id = "UsdPreviewSurface"
                color3f inputs:diffuseColor = (0.9, 0.85, 0.8)
            }
        }
    }

    def Cube "Wall0"
    {
        rel material:binding = </Room/Materials/WallMaterial>
        double size = 1
        double3 xformOp:translate = (0, 1.25, -2)
        double3 xformOp:scale = (4, 2.5, 0.01)
        uniform token[] xformOpOrder = ["xformOp:translate", "xformOp:scale"]
    }

    def Mesh "Floor0"
    {
        int[] faceVertexCounts = [4]
        int[] faceVertexIndices = [0, 1, 2, 3]
        point3f[] points = [(-2, 0, -2), (2, 0, -2), (2, 0, 2), (-2, 0, 2)]
    }
}
"""

ROOM_PLAN = {
    "identifier": "room-1",
    "walls": [
        {
            "identifier": "W1",
            "dimensions": [4.0, 2.5, 0.0],
            "transform": [1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, 0, 1.25, -2, 1],
            "polygonCorners": [[-2, -1.25, 0], [2, -1.25, 0], [2, 1.25, 0], [-2, 1.25, 0]],
        }
    ],
    "doors": [
        {
            "identifier": "D1",
            "dimensions": [0.9, 2.0, 0.0],
            "transform": [1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, 1, 1, -2, 1],
        }
    ],
}


def build_usdz(layers: dict[str, str | bytes] | None = None) -> bytes:
    """Pack layers into an uncompressed USDZ-style zip archive."""
    layers = layers if layers is not None else {"scene.usda": ROOM_USDA}
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as archive:
        for name, content in layers.items():
            archive.writestr(name, content.encode("utf-8") if isinstance(content, str) else content)
    return buffer.getvalue()


@pytest.fixture()
def usdz_bytes() -> bytes:
    return build_usdz()


@pytest.fixture()
def make_usdz():
    return build_usdz


@pytest.fixture()
def room_plan_bytes() -> bytes:
    return json.dumps(ROOM_PLAN).encode("utf-8")


@pytest.fixture(autouse=True)
def _use_test_env(tmp_path, monkeypatch):
    db_path = tmp_path / "test.db"
    database_url = f"sqlite+pysqlite:///{db_path}"
    media_root = tmp_path / "media"

    config = settings_module.settings
    monkeypatch.setattr(config, "database_url", database_url)
    monkeypatch.setattr(config, "db_auto_create", True)
    monkeypatch.setattr(config, "media_root", str(media_root))
    monkeypatch.setattr(config, "storage_backend", "local")
    monkeypatch.setattr(config, "cron_secret", None)
    monkeypatch.setattr(config, "realtime_notify_enabled", False)
    monkeypatch.setattr(config, "conversion_enable_fallback", True)
    monkeypatch.setattr(config, "conversion_max_file_size", 50 * 1024 * 1024)

    init_engine(database_url)
    Base.metadata.create_all(bind=get_engine())
    init_storage(config)
    init_notifier(config)

    yield


@pytest.fixture()
def object_store():
    return get_object_store()


@pytest.fixture()
def put_object(object_store):
    """Store bytes in the test bucket and return their storage URI."""

    def _put(path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        bucket = settings_module.settings.storage_bucket
        object_store.upload(bucket, path, data, content_type)
        return f"supabase://{bucket}/{path}"

    return _put


@pytest.fixture()
async def client():
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
