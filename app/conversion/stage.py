"""Read room geometry from a USD stage with the OpenUSD runtime.

``pxr`` ships in the ``usd-core`` distribution (the ``usd`` extra). It is
imported when a stage is opened, so the service still starts without it and
conversions take the degraded path instead.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Any

import numpy as np
import trimesh

from app.conversion.errors import ConversionError, ConversionErrorCode
from app.conversion.scene import MIN_WALL_THICKNESS, Color, MeshPart, RoomScene, box_geometry, classify_part


logger = logging.getLogger(__name__)

_PRIMITIVE_TYPES = ("Cube", "Sphere", "Cylinder", "Capsule", "Cone")


def open_stage(root_layer: Path):
    """Open ``root_layer`` as a ``Usd.Stage``.

    Raises:
        ConversionError: UNSUPPORTED_SCHEMA when the USD runtime is missing
            or cannot read the layer.
    """
    try:
        from pxr import Tf, Usd
    except ImportError as exc:
        raise ConversionError(
            ConversionErrorCode.UNSUPPORTED_SCHEMA,
            "USD runtime not installed (install the usd extra for usd-core)",
        ) from exc

    try:
        stage = Usd.Stage.Open(str(root_layer))
    except Tf.ErrorException as exc:
        raise ConversionError(ConversionErrorCode.UNSUPPORTED_SCHEMA, f"{root_layer.name}: {exc}") from exc
    if stage is None:
        raise ConversionError(ConversionErrorCode.UNSUPPORTED_SCHEMA, f"{root_layer.name}: stage did not open")
    return stage


def stage_root_matrix(up_axis: str, meters_per_unit: float) -> np.ndarray:
    """Scale to metres, and turn Z-up stages to Y-up."""
    matrix = np.identity(4)
    if meters_per_unit and meters_per_unit > 0:
        matrix = trimesh.transformations.scale_matrix(float(meters_per_unit))
    if str(up_axis).upper() == "Z":
        matrix = trimesh.transformations.rotation_matrix(-math.pi / 2, [1, 0, 0]) @ matrix
    return matrix


def _matrix(value: Any) -> np.ndarray:
    # Gf matrices are row-vector; transpose to the column convention.
    return np.array([[value[row][col] for col in range(4)] for row in range(4)], dtype=np.float64).T


def _first_color(value: Any) -> Color | None:
    if value is None:
        return None
    try:
        vector = np.array(value, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError):
        return None
    if vector.size < 3 or not np.isfinite(vector[:3]).all():
        return None
    return (float(vector[0]), float(vector[1]), float(vector[2]))


def _authored(prim, name: str) -> Any:
    attr = prim.GetAttribute(name)
    if not attr or not attr.HasAuthoredValue():
        return None
    return attr.Get()


def triangulate(counts: Any, indices: Any, point_count: int, path: str, *, left_handed: bool = False) -> np.ndarray:
    """Fan-triangulate USD faces into an ``(n, 3)`` face array.

    Raises:
        ConversionError: UNSUPPORTED_SCHEMA for indices that do not fit the
            points or the face counts.
    """
    flat = np.array(list(indices or []), dtype=np.int64).reshape(-1)
    if flat.size and (flat.min() < 0 or flat.max() >= point_count):
        raise ConversionError(ConversionErrorCode.UNSUPPORTED_SCHEMA, f"face index out of range in {path}")
    counts = [int(count) for count in (counts or [])]
    if not counts:
        faces = flat[: flat.size - flat.size % 3].reshape(-1, 3)
    else:
        if sum(counts) != flat.size:
            raise ConversionError(
                ConversionErrorCode.UNSUPPORTED_SCHEMA,
                f"faceVertexCounts do not match faceVertexIndices in {path}",
            )
        fan: list[tuple[int, int, int]] = []
        cursor = 0
        for count in counts:
            face = flat[cursor:cursor + count]
            cursor += count
            for k in range(1, count - 1):
                fan.append((int(face[0]), int(face[k]), int(face[k + 1])))
        faces = np.array(fan, dtype=np.int64).reshape(-1, 3)
    if left_handed:
        faces = faces[:, ::-1]
    return faces


def _primitive_half_extents(prim) -> np.ndarray:
    extent = _authored(prim, "extent")
    if extent is not None and len(extent) == 2:
        low, high = np.array(extent[0], dtype=np.float64), np.array(extent[1], dtype=np.float64)
        return np.abs(high - low) / 2
    type_name = str(prim.GetTypeName())
    if type_name == "Cube":
        return np.full(3, float(prim.GetAttribute("size").Get() or 2.0) / 2)
    radius = float(prim.GetAttribute("radius").Get() or 1.0)
    if type_name == "Sphere":
        return np.full(3, radius)
    height = float(prim.GetAttribute("height").Get() or 2.0)
    half = np.full(3, radius)
    half[{"X": 0, "Y": 1, "Z": 2}.get(str(prim.GetAttribute("axis").Get() or "Z"), 2)] = height / 2
    return half


def clamp_depth(world: np.ndarray, half: np.ndarray, minimum: float = MIN_WALL_THICKNESS) -> tuple[np.ndarray, np.ndarray]:
    """Widen the local Z axis of a box until it is ``minimum`` thick in world space."""
    world = world.copy()
    half = half.copy()
    depth_axis = world[:3, 2]
    scale = float(np.linalg.norm(depth_axis))
    if scale == 0.0:
        normal = np.cross(world[:3, 0], world[:3, 1])
        length = float(np.linalg.norm(normal))
        if length == 0.0:
            return world, half
        world[:3, 2] = normal / length
        half[2] = minimum / 2
        return world, half
    if scale * half[2] * 2 < minimum:
        half[2] = minimum / (2 * scale)
    return world, half


class _StageReader:
    def __init__(self, stage) -> None:
        from pxr import Usd, UsdGeom, UsdShade

        self._usd = Usd
        self._geom = UsdGeom
        self._shade = UsdShade
        self._stage = stage
        self._xforms = UsdGeom.XformCache(Usd.TimeCode.Default())
        self._root = stage_root_matrix(UsdGeom.GetStageUpAxis(stage), UsdGeom.GetStageMetersPerUnit(stage))
        self._materials: dict[str, Color | None] = {}

    def _material_color(self, material_prim) -> Color | None:
        key = str(material_prim.GetPath())
        if key not in self._materials:
            color = None
            for node in self._usd.PrimRange(material_prim):
                if node.IsA(self._shade.Shader):
                    color = _first_color(_authored(node, "inputs:diffuseColor"))
                    if color is not None:
                        break
            self._materials[key] = color
        return self._materials[key]

    def _bound_color(self, prim) -> Color | None:
        binding = prim.GetRelationship("material:binding")
        targets = binding.GetTargets() if binding else []
        if not targets:
            return None
        material = self._stage.GetPrimAtPath(targets[0])
        if not material:
            return None
        return self._material_color(material)

    def _hidden(self, prim) -> bool:
        if not prim.IsA(self._geom.Imageable):
            return False
        imageable = self._geom.Imageable(prim)
        return (
            imageable.GetVisibilityAttr().Get() == self._geom.Tokens.invisible
            or imageable.GetPurposeAttr().Get() == self._geom.Tokens.guide
        )

    def _world(self, prim) -> np.ndarray:
        return self._root @ _matrix(self._xforms.GetLocalToWorldTransform(prim))

    def _mesh_part(self, prim, kind: str, color: Color | None) -> MeshPart | None:
        mesh = self._geom.Mesh(prim)
        path = str(prim.GetPath())
        raw_points = mesh.GetPointsAttr().Get()
        if raw_points is None or len(raw_points) == 0:
            return None
        points = np.array(raw_points, dtype=np.float64).reshape(-1, 3)
        if not np.isfinite(points).all():
            raise ConversionError(ConversionErrorCode.UNSUPPORTED_SCHEMA, f"non-finite points in {path}")
        faces = triangulate(
            mesh.GetFaceVertexCountsAttr().Get(),
            mesh.GetFaceVertexIndicesAttr().Get(),
            len(points),
            path,
            left_handed=mesh.GetOrientationAttr().Get() == self._geom.Tokens.leftHanded,
        )
        if not len(faces):
            return None
        return MeshPart(
            name=prim.GetName(),
            path=path,
            kind=kind,
            vertices=trimesh.transformations.transform_points(points, self._world(prim)),
            faces=faces,
            color=color,
        )

    def _primitive_part(self, prim, kind: str, color: Color | None) -> MeshPart:
        world = self._world(prim)
        half = _primitive_half_extents(prim)
        if prim.GetTypeName() == "Cube":
            world, half = clamp_depth(world, half)
        vertices, faces = box_geometry(half)
        return MeshPart(
            name=prim.GetName(),
            path=str(prim.GetPath()),
            kind=kind,
            vertices=trimesh.transformations.transform_points(vertices, world),
            faces=faces,
            color=color,
            source="primitive",
            width=float(np.linalg.norm(world[:3, 0]) * half[0] * 2),
        )

    def _visit(self, prim, inherited: Color | None, scene: RoomScene) -> None:
        if self._hidden(prim) or prim.IsA(self._shade.Material):
            return
        color = self._bound_color(prim) or inherited
        own_color = _first_color(_authored(prim, "primvars:displayColor")) or color
        kind = classify_part(str(prim.GetPath()))

        if prim.IsA(self._geom.Mesh):
            part = self._mesh_part(prim, kind, own_color)
            if part is not None:
                scene.parts.append(part)
        elif str(prim.GetTypeName()) in _PRIMITIVE_TYPES:
            scene.parts.append(self._primitive_part(prim, kind, own_color))

        for child in prim.GetChildren():
            self._visit(child, color, scene)

    def read(self) -> RoomScene:
        scene = RoomScene()
        for prim in self._stage.GetPseudoRoot().GetChildren():
            self._visit(prim, None, scene)
        return scene


def build_scene(stage) -> RoomScene:
    """Build world-space parts from every visible gprim on ``stage``.

    Class and inactive prims are skipped by the stage itself; invisible and
    guide prims are pruned with their subtrees.

    Raises:
        ConversionError: UNSUPPORTED_SCHEMA for malformed mesh data,
            EMPTY_GEOMETRY when no prim yields a triangle.
    """
    scene = _StageReader(stage).read()
    if not scene.triangle_count:
        raise ConversionError(ConversionErrorCode.EMPTY_GEOMETRY, "USD stage contains no renderable geometry")
    logger.debug("stage_read", extra={"parts": len(scene.parts), "triangles": scene.triangle_count})
    return scene
