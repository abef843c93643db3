import json
import sys

import numpy as np
import pytest

from app.conversion import engine
from app.conversion.engine import ConversionOptions, convert_usdz_to_glb
from app.conversion.errors import USER_MESSAGES, ConversionErrorCode
from app.conversion.glb import load_glb

from conftest import ROOM_PLAN, requires_pxr


CUBE_ONLY_USDA = """#usda 1.0
def Xform "Room"
{
    def Cube "Wall0"
    {
        double size = 1
        double3 xformOp:scale = (4, 2.5, 0.2)
        uniform token[] xformOpOrder = ["xformOp:scale"]
    }
}
"""


def _geometry(glb):
    return load_glb(glb).geometry


def _extent(geometry):
    low, high = geometry.bounds
    return high - low


def _base_color(geometry):
    return np.asarray(geometry.visual.material.baseColorFactor, dtype=float) / 255.0


@pytest.fixture()
def without_usd_runtime(monkeypatch):
    monkeypatch.setitem(sys.modules, "pxr", None)


@requires_pxr
def test_converts_room_with_materials(usdz_bytes):
    result = convert_usdz_to_glb(usdz_bytes, "room.usdz")

    assert result.success
    assert result.error is None
    assert result.warning is None
    assert not result.used_fallback

    geometry = _geometry(result.glb_buffer)
    assert set(geometry) == {"Wall0", "Floor0"}
    assert geometry["Wall0"].metadata["kind"] == "wall"
    assert geometry["Wall0"].metadata["path"] == "/Room/Wall0"
    assert geometry["Wall0"].metadata["source"] == "primitive"
    assert geometry["Floor0"].metadata["kind"] == "floor"

    assert _base_color(geometry["Wall0"]) == pytest.approx([0.9, 0.85, 0.8, 1.0], abs=1 / 255)
    assert _base_color(geometry["Floor0"]) == pytest.approx([0.8, 0.8, 0.8, 1.0], abs=1 / 255)


@requires_pxr
def test_thin_walls_get_minimum_thickness(usdz_bytes):
    wall = _geometry(convert_usdz_to_glb(usdz_bytes).glb_buffer)["Wall0"]

    assert _extent(wall)[2] == pytest.approx(0.1, abs=1e-5)
    assert _extent(wall)[0] == pytest.approx(4.0, abs=1e-5)


@requires_pxr
def test_floor_is_aligned_to_zero(usdz_bytes):
    geometry = _geometry(convert_usdz_to_glb(usdz_bytes).glb_buffer)
    assert min(mesh.bounds[0][1] for mesh in geometry.values()) == pytest.approx(0.0, abs=1e-6)


@requires_pxr
def test_output_is_deterministic(usdz_bytes):
    first = convert_usdz_to_glb(usdz_bytes)
    second = convert_usdz_to_glb(usdz_bytes)
    assert first.glb_buffer == second.glb_buffer


@requires_pxr
def test_z_up_layers_in_centimetres_are_normalised(make_usdz):
    layer = """#usda 1.0
(
    metersPerUnit = 0.01
    upAxis = "Z"
)
def Mesh "Wall"
{
    int[] faceVertexCounts = [4]
    int[] faceVertexIndices = [0, 1, 2, 3]
    point3f[] points = [(0, 0, 0), (100, 0, 0), (100, 0, 300), (0, 0, 300)]
}
"""
    result = convert_usdz_to_glb(make_usdz({"scene.usda": layer}))
    extent = _extent(_geometry(result.glb_buffer)["Wall"])

    assert extent[1] == pytest.approx(3.0, abs=1e-5)
    assert extent[0] == pytest.approx(1.0, abs=1e-5)


@requires_pxr
def test_binary_crate_layers_are_read(tmp_path, make_usdz):
    from pxr import Usd, UsdGeom

    path = tmp_path / "scene.usdc"
    stage = Usd.Stage.CreateNew(str(path))
    UsdGeom.Xform.Define(stage, "/Room")
    UsdGeom.Cube.Define(stage, "/Room/Wall0").GetSizeAttr().Set(2.0)
    floor = UsdGeom.Mesh.Define(stage, "/Room/Floor0")
    floor.GetPointsAttr().Set([(-2, 0, -2), (2, 0, -2), (2, 0, 2), (-2, 0, 2)])
    floor.GetFaceVertexCountsAttr().Set([4])
    floor.GetFaceVertexIndicesAttr().Set([0, 1, 2, 3])
    stage.GetRootLayer().Save()

    data = path.read_bytes()
    assert data.startswith(b"PXR-USDC")
    result = convert_usdz_to_glb(make_usdz({"scene.usdc": data}))

    assert result.success
    assert not result.used_fallback
    assert set(_geometry(result.glb_buffer)) == {"Wall0", "Floor0"}


@requires_pxr
def test_room_plan_replaces_walls_and_records_openings(usdz_bytes):
    options = ConversionOptions(room_plan_json=json.dumps(ROOM_PLAN).encode("utf-8"))
    loaded = load_glb(convert_usdz_to_glb(usdz_bytes, options=options).glb_buffer)

    assert loaded.geometry["Wall0"].metadata["source"] == "roomplan"

    room_plan = loaded.metadata["roomPlan"]
    assert room_plan["roomHeight"] == 2.5
    assert room_plan["walls"][0]["identifier"] == "W1"
    assert room_plan["walls"][0]["position"] == [0.0, 1.25, -2.0]
    assert room_plan["openings"] == [
        {"category": "door", "identifier": "D1", "position": [1.0, 1.0, -2.0], "dimensions": [0.9, 2.0, 0.0]}
    ]


@requires_pxr
def test_invalid_room_plan_is_a_warning(usdz_bytes):
    result = convert_usdz_to_glb(usdz_bytes, options=ConversionOptions(room_plan_json=b"[1, 2"))

    assert result.success
    assert not result.used_fallback
    assert result.warning.startswith("RoomPlan metadata ignored")


@requires_pxr
def test_misshapen_room_plan_is_a_warning_in_strict_mode(usdz_bytes):
    result = convert_usdz_to_glb(usdz_bytes, options=ConversionOptions(room_plan_json=b'{"walls": 5}'))

    assert result.success
    assert not result.used_fallback
    assert result.warning == "RoomPlan metadata ignored: RoomPlan 'walls' must be a list"
    assert "roomPlan" not in load_glb(result.glb_buffer).metadata


def test_misshapen_room_plan_never_escapes_the_engine(make_usdz):
    options = ConversionOptions(enable_fallback=True, room_plan_json={"walls": 5, "doors": "D1"})
    result = convert_usdz_to_glb(make_usdz({"scene.usda": CUBE_ONLY_USDA}), options=options)

    assert isinstance(result, engine.ConversionResult)
    assert result.success
    assert "RoomPlan metadata ignored: RoomPlan 'walls' must be a list" in result.warning


def test_fallback_failure_is_reported_as_a_result(make_usdz, monkeypatch):
    def broken(*args, **kwargs):
        raise TypeError("unexpected shape")

    monkeypatch.setattr(engine, "degraded_scene", broken)
    result = convert_usdz_to_glb(make_usdz({"readme.txt": "hello"}), options=ConversionOptions(enable_fallback=True))

    assert not result.success
    assert result.glb_buffer is None
    assert result.error.code is ConversionErrorCode.UNKNOWN
    assert "fallback conversion failed: unexpected shape" in str(result.error)


def test_oversize_input_fails_fast_even_with_fallback(usdz_bytes):
    options = ConversionOptions(max_file_size=64, enable_fallback=True)
    result = convert_usdz_to_glb(usdz_bytes, options=options)

    assert not result.success
    assert result.glb_buffer is None
    assert result.error.code is ConversionErrorCode.FILE_TOO_LARGE
    assert "Maximum size is 0MB" in str(result.error)


def test_empty_input_is_rejected():
    result = convert_usdz_to_glb(b"", options=ConversionOptions(enable_fallback=True))
    assert result.error.code is ConversionErrorCode.FILE_TOO_LARGE


def test_non_zip_input_is_invalid_container():
    result = convert_usdz_to_glb(b"#usda 1.0\n", options=ConversionOptions(enable_fallback=True))

    assert not result.success
    assert result.error.code is ConversionErrorCode.INVALID_CONTAINER
    assert result.error.user_message == USER_MESSAGES[ConversionErrorCode.INVALID_CONTAINER]


def test_archive_without_layers_fails_without_fallback(make_usdz):
    result = convert_usdz_to_glb(make_usdz({"readme.txt": "hello"}))

    assert not result.success
    assert result.error.code is ConversionErrorCode.INVALID_CONTAINER


def test_members_outside_the_package_are_invalid(make_usdz):
    result = convert_usdz_to_glb(make_usdz({"../escape.usda": CUBE_ONLY_USDA}))
    assert result.error.code is ConversionErrorCode.INVALID_CONTAINER


def test_archive_without_layers_falls_back_to_placeholder(make_usdz):
    result = convert_usdz_to_glb(make_usdz({"readme.txt": "hello"}), options=ConversionOptions(enable_fallback=True))

    assert result.success
    assert result.used_fallback
    assert result.warning.startswith("Converted with reduced fidelity (placeholder)")
    loaded = load_glb(result.glb_buffer)
    assert set(loaded.geometry) == {"PlaceholderRoom"}
    assert loaded.metadata == {"placeholder": True}
    low, high = loaded.geometry["PlaceholderRoom"].bounds
    assert low[1] == pytest.approx(0.0)
    assert high[1] == pytest.approx(2.5)


def test_missing_usd_runtime_falls_back_to_scraped_meshes(usdz_bytes, without_usd_runtime):
    strict = convert_usdz_to_glb(usdz_bytes)
    assert strict.error.code is ConversionErrorCode.UNSUPPORTED_SCHEMA

    degraded = convert_usdz_to_glb(usdz_bytes, options=ConversionOptions(enable_fallback=True))
    assert degraded.success
    assert degraded.warning.startswith("Converted with reduced fidelity (geometry-only)")
    geometry = _geometry(degraded.glb_buffer)
    assert set(geometry) == {"Floor0"}
    assert geometry["Floor0"].metadata["source"] == "scraped"


def test_corrupt_binary_layers_are_unsupported(make_usdz):
    result = convert_usdz_to_glb(make_usdz({"scene.usdc": b"PXR-USDC\x00\x01binary"}))
    assert result.error.code is ConversionErrorCode.UNSUPPORTED_SCHEMA


def test_unparseable_layer_falls_back_to_scraped_meshes(make_usdz):
    layer = """#usda 1.0
def Mesh "Floor"
{
    int[] faceVertexIndices = [0, 1, 2]
    point3f[] points = [(0, 0, 0), (1, 0, 0), (1, 0, 1)]
    float broken = $
}
"""
    strict = convert_usdz_to_glb(make_usdz({"scene.usda": layer}))
    assert strict.error.code is ConversionErrorCode.UNSUPPORTED_SCHEMA

    degraded = convert_usdz_to_glb(make_usdz({"scene.usda": layer}), options=ConversionOptions(enable_fallback=True))
    assert degraded.success
    assert "(geometry-only)" in degraded.warning
    assert _geometry(degraded.glb_buffer)["Floor"].metadata["source"] == "scraped"


def test_unreadable_layer_falls_back_to_room_plan_walls(make_usdz):
    options = ConversionOptions(enable_fallback=True, room_plan_json=ROOM_PLAN)
    result = convert_usdz_to_glb(make_usdz({"scene.usdc": b"PXR-USDC\x00"}), options=options)

    assert result.success
    assert "(roomplan-walls)" in result.warning
    geometry = _geometry(result.glb_buffer)
    assert [mesh.metadata["source"] for mesh in geometry.values()] == ["roomplan"]


@requires_pxr
def test_layers_without_geometry_are_empty(make_usdz):
    layer = '#usda 1.0\ndef Xform "Room"\n{\n    def Scope "Nothing" {}\n}\n'
    result = convert_usdz_to_glb(make_usdz({"scene.usda": layer}))

    assert result.error.code is ConversionErrorCode.EMPTY_GEOMETRY
    assert result.error.describe().startswith(USER_MESSAGES[ConversionErrorCode.EMPTY_GEOMETRY])


@requires_pxr
def test_out_of_range_face_indices_are_unsupported(make_usdz):
    layer = """#usda 1.0
def Mesh "Floor"
{
    int[] faceVertexCounts = [3]
    int[] faceVertexIndices = [0, 1, 7]
    point3f[] points = [(0, 0, 0), (1, 0, 0), (1, 0, 1)]
}
"""
    result = convert_usdz_to_glb(make_usdz({"scene.usda": layer}))
    assert result.error.code is ConversionErrorCode.UNSUPPORTED_SCHEMA
