"""Degraded conversion used when the primary USD path fails.

Tiers, best first: mesh arrays scraped straight from the text layers
(transforms and materials dropped), RoomPlan wall outlines, and finally a
placeholder room box sized from the upload.
"""

from __future__ import annotations

import logging
import re

import numpy as np

from app.conversion.container import UsdLayer
from app.conversion.roomplan import room_plan_walls
from app.conversion.scene import PART_FLOOR, MeshPart, RoomScene, box_geometry, classify_part


logger = logging.getLogger(__name__)

PLACEHOLDER_HEIGHT = 2.5

_MESH_HEADER = re.compile(r'def\s+Mesh\s+"([^"]+)"')
_NUMBER = re.compile(r"[-+]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][-+]?\d+)?")


def _array_after(block: str, attribute: str) -> list[float] | None:
    match = re.search(rf"\b{re.escape(attribute)}\s*=\s*\[", block)
    if match is None:
        return None
    end = block.find("]", match.end())
    if end < 0:
        return None
    return [float(value) for value in _NUMBER.findall(block[match.end():end])]


def scrape_meshes(layers: list[UsdLayer]) -> list[MeshPart]:
    """Pull points and face indices out of ``def Mesh`` blocks without parsing."""
    parts: list[MeshPart] = []
    for layer in layers:
        if layer.is_binary:
            continue
        text = layer.data.decode("utf-8", errors="replace")
        headers = list(_MESH_HEADER.finditer(text))
        for position, header in enumerate(headers):
            end = headers[position + 1].start() if position + 1 < len(headers) else len(text)
            block = text[header.end():end]
            points = _array_after(block, "points")
            indices = _array_after(block, "faceVertexIndices")
            if not points or not indices or len(points) % 3:
                continue
            vertices = np.array(points, dtype=np.float64).reshape(-1, 3)
            faces = np.array(indices, dtype=np.int64)
            faces = faces[: faces.size - faces.size % 3].reshape(-1, 3)
            faces = faces[((faces >= 0) & (faces < len(vertices))).all(axis=1)]
            if not faces.size or not np.isfinite(vertices).all():
                continue
            name = header.group(1)
            parts.append(
                MeshPart(
                    name=name,
                    path=f"/{name}",
                    kind=classify_part(name),
                    vertices=vertices,
                    faces=faces,
                    source="scraped",
                )
            )
    return parts


def placeholder_room(input_size: int) -> RoomScene:
    """A closed box whose footprint grows with the upload size, floor at y = 0."""
    width = min(max(input_size / 5000, 2.0), 8.0)
    depth = min(max(input_size / 6000, 2.0), 6.0)
    half = np.array([width / 2, PLACEHOLDER_HEIGHT / 2, depth / 2])
    vertices, faces = box_geometry(half, center=np.array([0.0, PLACEHOLDER_HEIGHT / 2, 0.0]))
    part = MeshPart(
        name="PlaceholderRoom",
        path="/PlaceholderRoom",
        kind=PART_FLOOR,
        vertices=vertices,
        faces=faces,
        source="placeholder",
    )
    return RoomScene(parts=[part], extras={"placeholder": True})


def degraded_scene(
    layers: list[UsdLayer] | None,
    room_plan: dict | None,
    input_size: int,
) -> tuple[RoomScene, str]:
    """Return the best degraded scene and a short label of the tier used."""
    if layers:
        parts = scrape_meshes(layers)
        if parts:
            return RoomScene(parts=parts), "geometry-only"
    if room_plan:
        scene = room_plan_walls(room_plan)
        if scene.triangle_count:
            return scene, "roomplan-walls"
    logger.info("conversion_placeholder_used", extra={"input_size": input_size})
    return placeholder_room(input_size), "placeholder"
