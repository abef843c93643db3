"""Merge RoomPlan ``CapturedRoom`` JSON into a converted scene.

RoomPlan encodes transforms as 16 floats in column-major order and wall
outlines as ``polygonCorners`` in the wall's local frame.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any

import numpy as np
import trimesh

from app.conversion.scene import MIN_WALL_THICKNESS, PART_WALL, MeshPart, RoomScene


logger = logging.getLogger(__name__)

_OPENING_CATEGORIES = ("doors", "windows", "openings")
_LIST_CATEGORIES = ("walls", *_OPENING_CATEGORIES)


@dataclass(frozen=True)
class RoomPlanSummary:
    wall_count: int
    opening_count: int
    replaced_walls: int
    added_walls: int
    room_height: float | None


def load_room_plan(raw: bytes | str | dict | None) -> dict | None:
    """Decode a sidecar into a dict.

    Raises:
        ValueError: If the payload is not a JSON object, or one of the
            surface categories is present but not a list.
    """
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    data = raw if isinstance(raw, dict) else json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("RoomPlan metadata must be a JSON object")
    for category in _LIST_CATEGORIES:
        value = data.get(category)
        if value is not None and not isinstance(value, list):
            raise ValueError(f"RoomPlan '{category}' must be a list")
    return data


def _entries(plan: dict, category: str) -> list[dict]:
    value = plan.get(category)
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


def _matrix(transform: Any) -> np.ndarray | None:
    if not isinstance(transform, list) or len(transform) != 16:
        return None
    try:
        matrix = np.array(transform, dtype=np.float64).reshape(4, 4).T
    except (TypeError, ValueError):
        return None
    if not np.isfinite(matrix).all():
        return None
    return matrix


def _dimensions(entry: dict) -> list[float]:
    values = entry.get("dimensions")
    if not isinstance(values, list):
        return []
    try:
        return [float(v) for v in values[:3]]
    except (TypeError, ValueError):
        return []


def _position(entry: dict) -> list[float] | None:
    matrix = _matrix(entry.get("transform"))
    if matrix is None:
        return None
    return [round(float(v), 6) for v in matrix[:3, 3]]


def wall_prism(corners: Any, transform: Any, thickness: float = MIN_WALL_THICKNESS) -> tuple[np.ndarray, np.ndarray] | None:
    """Extrude a wall outline into a closed slab, or None if degenerate."""
    matrix = _matrix(transform)
    if matrix is None or not isinstance(corners, list) or len(corners) < 3:
        return None
    try:
        local = np.array([[float(c) for c in corner[:3]] for corner in corners], dtype=np.float64)
    except (TypeError, ValueError, IndexError, KeyError):
        return None
    if local.ndim != 2 or local.shape[1] != 3:
        return None
    world = trimesh.transformations.transform_points(local, matrix)

    normal = np.cross(world[1] - world[0], world[2] - world[0])
    length = np.linalg.norm(normal)
    if not length or not np.isfinite(length):
        return None
    offset = normal / length * (thickness / 2)
    count = len(world)

    faces: list[tuple[int, int, int]] = []
    for k in range(1, count - 1):
        faces.append((0, k, k + 1))
        faces.append((count, count + k + 1, count + k))
    for k in range(count):
        nxt = (k + 1) % count
        faces.append((k, nxt, count + nxt))
        faces.append((k, count + nxt, count + k))
    return np.vstack([world + offset, world - offset]), np.array(faces, dtype=np.int64)


def apply_room_plan(scene: RoomScene, plan: dict) -> RoomPlanSummary:
    """Replace parametric walls with RoomPlan outlines and record room metadata.

    Each JSON wall replaces the unmatched primitive wall whose width is
    closest to its first dimension. When the scene has no walls at all, the
    outlines are added as new parts. Entries that are not objects are skipped.
    """
    walls = _entries(plan, "walls")
    openings = [(category, entry) for category in _OPENING_CATEGORIES for entry in _entries(plan, category)]

    candidates = [part for part in scene.parts_of_kind(PART_WALL) if part.width is not None]
    had_walls = bool(scene.parts_of_kind(PART_WALL))
    replaced = 0
    added = 0
    wall_extras: list[dict] = []

    for index, wall in enumerate(walls):
        dims = _dimensions(wall)
        identifier = str(wall.get("identifier") or f"wall-{index}")
        wall_extras.append({"identifier": identifier, "position": _position(wall), "dimensions": dims})
        prism = wall_prism(wall.get("polygonCorners"), wall.get("transform"))
        if prism is None:
            continue
        vertices, faces = prism
        if candidates and dims:
            match = min(candidates, key=lambda part: abs((part.width or 0.0) - dims[0]))
            candidates.remove(match)
            match.vertices = vertices
            match.faces = faces
            match.source = "roomplan"
            replaced += 1
        elif not had_walls:
            scene.parts.append(
                MeshPart(
                    name=f"RoomPlanWall{index}",
                    path=f"/RoomPlan/Walls/{identifier}",
                    kind=PART_WALL,
                    vertices=vertices,
                    faces=faces,
                    source="roomplan",
                )
            )
            added += 1

    heights = [dims[1] for dims in (_dimensions(wall) for wall in walls) if len(dims) > 1]
    room_height = max(heights) if heights else None

    scene.extras["roomPlan"] = {
        "walls": wall_extras,
        "openings": [
            {
                "category": category.rstrip("s"),
                "identifier": str(entry.get("identifier") or ""),
                "position": _position(entry),
                "dimensions": _dimensions(entry),
            }
            for category, entry in openings
        ],
        "roomHeight": room_height,
    }
    summary = RoomPlanSummary(
        wall_count=len(walls),
        opening_count=len(openings),
        replaced_walls=replaced,
        added_walls=added,
        room_height=room_height,
    )
    logger.info(
        "roomplan_merged",
        extra={
            "walls": summary.wall_count,
            "openings": summary.opening_count,
            "replaced_walls": summary.replaced_walls,
            "added_walls": summary.added_walls,
        },
    )
    return summary


def room_plan_walls(plan: dict) -> RoomScene:
    """Scene made only of RoomPlan wall outlines (used by the fallback)."""
    scene = RoomScene()
    apply_room_plan(scene, plan)
    return scene
