"""USDZ to GLB conversion entry point.

The engine is stateless: it takes bytes and returns a ``ConversionResult``.
Callers decide what to persist.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import tempfile

from app.conversion.container import UsdLayer, extract_package, read_usd_layers, validate_usdz_input
from app.conversion.errors import ConversionError, ConversionErrorCode
from app.conversion.fallback import degraded_scene
from app.conversion.glb import encode_glb
from app.conversion.roomplan import apply_room_plan, load_room_plan
from app.conversion.scene import RoomScene
from app.conversion.stage import build_scene, open_stage


logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024


@dataclass(frozen=True)
class ConversionOptions:
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    enable_fallback: bool = False
    room_plan_json: bytes | str | dict | None = None


@dataclass(frozen=True)
class ConversionResult:
    success: bool
    glb_buffer: bytes | None = None
    error: ConversionError | None = None
    warning: str | None = None
    used_fallback: bool = False


def _primary_scene(usdz_buffer: bytes, room_plan: dict | None) -> RoomScene:
    with tempfile.TemporaryDirectory(prefix="usdz-") as workdir:
        root_layer = extract_package(usdz_buffer, Path(workdir))
        scene = build_scene(open_stage(root_layer))
    if room_plan:
        apply_room_plan(scene, room_plan)
    scene.align_floor()
    return scene


def _fallback_result(
    layers: list[UsdLayer] | None,
    room_plan: dict | None,
    input_size: int,
    primary_error: ConversionError,
    warnings: list[str],
    file_name: str,
) -> ConversionResult:
    try:
        scene, tier = degraded_scene(layers, room_plan, input_size)
        scene.align_floor()
        glb = encode_glb(scene, include_materials=False)
    except Exception as exc:  # noqa: BLE001
        logger.exception("conversion_fallback_failed", extra={"file_name": file_name})
        return ConversionResult(
            success=False,
            error=ConversionError(ConversionErrorCode.UNKNOWN, f"fallback conversion failed: {exc}"),
        )
    logger.info("conversion_fallback_used", extra={"file_name": file_name, "tier": tier})
    warnings.insert(0, f"Converted with reduced fidelity ({tier}): {primary_error.user_message}")
    return ConversionResult(
        success=True,
        glb_buffer=glb,
        warning="; ".join(warnings),
        used_fallback=True,
    )


def convert_usdz_to_glb(
    usdz_buffer: bytes,
    file_name: str = "scan.usdz",
    options: ConversionOptions | None = None,
) -> ConversionResult:
    """Convert a USDZ package (and optional RoomPlan JSON) into a GLB.

    Size and container signature are checked first and never fall back. Any
    later failure is retried through the degraded path when
    ``enable_fallback`` is set, which succeeds with a warning. The result is
    always returned, never raised.
    """
    options = options or ConversionOptions()
    try:
        validate_usdz_input(usdz_buffer, options.max_file_size)
    except ConversionError as error:
        logger.warning(
            "conversion_rejected",
            extra={"file_name": file_name, "code": error.code.value, "error": str(error)},
        )
        return ConversionResult(success=False, error=error)

    warnings: list[str] = []
    room_plan: dict | None = None
    try:
        room_plan = load_room_plan(options.room_plan_json)
    except (ValueError, UnicodeDecodeError) as exc:
        logger.warning("roomplan_metadata_ignored", extra={"file_name": file_name, "error": str(exc)})
        warnings.append(f"RoomPlan metadata ignored: {exc}")

    layers: list[UsdLayer] | None = None
    try:
        layers = read_usd_layers(usdz_buffer)
        scene = _primary_scene(usdz_buffer, room_plan)
        glb = encode_glb(scene)
        logger.info(
            "conversion_succeeded",
            extra={"file_name": file_name, "parts": len(scene.parts), "triangles": scene.triangle_count},
        )
        return ConversionResult(success=True, glb_buffer=glb, warning="; ".join(warnings) or None)
    except ConversionError as error:
        primary_error = error
    except Exception as exc:  # noqa: BLE001
        logger.exception("conversion_unexpected_error", extra={"file_name": file_name})
        primary_error = ConversionError(ConversionErrorCode.UNKNOWN, f"unexpected conversion failure: {exc}")

    logger.warning(
        "conversion_primary_failed",
        extra={
            "file_name": file_name,
            "code": primary_error.code.value,
            "error": str(primary_error),
            "fallback": options.enable_fallback,
        },
    )
    if not options.enable_fallback:
        return ConversionResult(success=False, error=primary_error)
    return _fallback_result(layers, room_plan, len(usdz_buffer), primary_error, warnings, file_name)
