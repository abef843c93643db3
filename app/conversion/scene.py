"""World-space room parts and the trimesh scene they export to.

Positions are metres with Y up. Matrices follow ``trimesh.transformations``:
column vectors, translation in the last column.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import trimesh


MIN_WALL_THICKNESS = 0.1

PART_WALL = "wall"
PART_FLOOR = "floor"
PART_OPENING = "opening"
PART_OBJECT = "object"

_OPENING_HINTS = ("door", "window", "opening")

Color = tuple[float, float, float]

DEFAULT_BASE_COLOR: Color = (0.8, 0.8, 0.8)


def surface_material(color: Color) -> trimesh.visual.material.PBRMaterial:
    return trimesh.visual.material.PBRMaterial(
        name="material_{:.3f}_{:.3f}_{:.3f}".format(*color),
        baseColorFactor=[*color, 1.0],
        metallicFactor=0.0,
        roughnessFactor=0.8,
        doubleSided=True,
    )


@dataclass
class MeshPart:
    name: str
    path: str
    kind: str
    vertices: np.ndarray
    faces: np.ndarray
    color: Color | None = None
    source: str = "mesh"
    width: float | None = None

    @property
    def triangle_count(self) -> int:
        return int(len(self.faces))

    def to_trimesh(self, color: Color) -> trimesh.Trimesh:
        return trimesh.Trimesh(
            vertices=self.vertices,
            faces=self.faces,
            visual=trimesh.visual.TextureVisuals(material=surface_material(color)),
            metadata={"kind": self.kind, "path": self.path, "source": self.source},
            process=False,
        )


@dataclass
class RoomScene:
    parts: list[MeshPart] = field(default_factory=list)
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def triangle_count(self) -> int:
        return sum(part.triangle_count for part in self.parts)

    def parts_of_kind(self, kind: str) -> list[MeshPart]:
        return [part for part in self.parts if part.kind == kind]

    def align_floor(self) -> None:
        """Shift every part so the lowest vertex sits at y = 0."""
        populated = [part for part in self.parts if len(part.vertices)]
        if not populated:
            return
        min_y = min(float(part.vertices[:, 1].min()) for part in populated)
        if min_y == 0.0:
            return
        for part in populated:
            part.vertices = part.vertices - np.array([0.0, min_y, 0.0])

    def to_trimesh(self, *, include_materials: bool = True) -> trimesh.Scene:
        """One geometry node per non-empty part; ``extras`` become scene metadata.

        Without ``include_materials`` every part shares the default grey.
        """
        scene = trimesh.Scene(metadata=dict(self.extras))
        for part in self.parts:
            if not part.triangle_count or not len(part.vertices):
                continue
            color = part.color if include_materials and part.color is not None else DEFAULT_BASE_COLOR
            scene.add_geometry(part.to_trimesh(color), geom_name=part.name)
        return scene


def box_geometry(half_extents: np.ndarray, center: np.ndarray | None = None) -> tuple[np.ndarray, np.ndarray]:
    transform = None
    if center is not None:
        transform = trimesh.transformations.translation_matrix(np.asarray(center, dtype=np.float64))
    box = trimesh.creation.box(extents=np.asarray(half_extents, dtype=np.float64) * 2, transform=transform)
    return np.asarray(box.vertices, dtype=np.float64), np.asarray(box.faces, dtype=np.int64)


def classify_part(path: str) -> str:
    lowered = path.lower()
    if any(hint in lowered for hint in _OPENING_HINTS):
        return PART_OPENING
    if "wall" in lowered:
        return PART_WALL
    if "floor" in lowered:
        return PART_FLOOR
    return PART_OBJECT
