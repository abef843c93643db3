"""GLB export and inspection through trimesh."""

from __future__ import annotations

import io
from typing import Any

import trimesh

from app.conversion.scene import RoomScene


GENERATOR = "roomscan-export"


def _stamp_generator(tree: dict[str, Any]) -> None:
    tree.setdefault("asset", {})["generator"] = GENERATOR


def encode_glb(scene: RoomScene, *, include_materials: bool = True) -> bytes:
    """Serialize ``scene`` as a GLB: one node and mesh per part.

    With ``include_materials`` false every part shares the default grey
    material.

    Raises:
        ValueError: If the scene has no exportable geometry.
    """
    exported = scene.to_trimesh(include_materials=include_materials)
    return exported.export(file_type="glb", tree_postprocessor=_stamp_generator)


def load_glb(data: bytes) -> trimesh.Scene:
    return trimesh.load_scene(io.BytesIO(data), file_type="glb")


def describe_glb(data: bytes) -> dict[str, int]:
    """Counts used in conversion logs."""
    loaded = load_glb(data)
    geometries = list(loaded.geometry.values())
    materials = {
        hash(geometry.visual.material)
        for geometry in geometries
        if getattr(geometry.visual, "material", None) is not None
    }
    return {
        "nodes": len(loaded.graph.nodes_geometry),
        "materials": len(materials),
        "vertices": sum(len(geometry.vertices) for geometry in geometries),
        "triangles": sum(len(geometry.faces) for geometry in geometries),
        "size_bytes": len(data),
    }
