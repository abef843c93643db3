"""USDZ container handling: size and signature checks, layer extraction."""

from __future__ import annotations

from dataclasses import dataclass
import io
from pathlib import Path
import zipfile
import zlib

from app.conversion.errors import ConversionError, ConversionErrorCode


ZIP_MAGIC = b"PK"
USDC_MAGIC = b"PXR-USDC"
USD_LAYER_SUFFIXES = (".usda", ".usd", ".usdc")

MEGABYTE = 1024 * 1024

_ARCHIVE_ERRORS = (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, EOFError, NotImplementedError)


@dataclass(frozen=True)
class UsdLayer:
    name: str
    data: bytes

    @property
    def is_binary(self) -> bool:
        return self.data.startswith(USDC_MAGIC)


def validate_usdz_input(buffer: bytes, max_file_size: int) -> None:
    """Reject input before any parsing work is attempted.

    Raises:
        ConversionError: FILE_TOO_LARGE for empty or oversize buffers,
            INVALID_CONTAINER when the ZIP signature is missing.
    """
    if not buffer:
        raise ConversionError(ConversionErrorCode.FILE_TOO_LARGE, "USDZ file is empty (0 bytes)")
    if len(buffer) > max_file_size:
        raise ConversionError(
            ConversionErrorCode.FILE_TOO_LARGE,
            f"USDZ file is too large ({len(buffer) / MEGABYTE:.2f}MB). "
            f"Maximum size is {max_file_size / MEGABYTE:.0f}MB",
        )
    if not buffer.startswith(ZIP_MAGIC):
        raise ConversionError(
            ConversionErrorCode.INVALID_CONTAINER,
            "Invalid USDZ file format. Expected a ZIP archive.",
        )


def _unreadable(exc: Exception) -> ConversionError:
    return ConversionError(ConversionErrorCode.INVALID_CONTAINER, f"Unreadable USDZ archive: {exc}")


def read_usd_layers(buffer: bytes) -> list[UsdLayer]:
    """Return the USD layers packed in a USDZ archive, root layer first."""
    try:
        with zipfile.ZipFile(io.BytesIO(buffer)) as archive:
            layers = [
                UsdLayer(name=info.filename, data=archive.read(info))
                for info in archive.infolist()
                if not info.is_dir() and info.filename.lower().endswith(USD_LAYER_SUFFIXES)
            ]
    except _ARCHIVE_ERRORS as exc:
        raise _unreadable(exc) from exc

    if not layers:
        raise ConversionError(ConversionErrorCode.INVALID_CONTAINER, "No USD layer found in USDZ archive")
    return layers


def extract_package(buffer: bytes, destination: Path) -> Path:
    """Unpack every archive member under ``destination`` and return the root layer.

    The root layer is the first USD layer in archive order, as in the USDZ
    packaging rules. Members that would land outside ``destination`` make
    the whole archive invalid.
    """
    base = destination.resolve()
    root_layer: Path | None = None
    try:
        with zipfile.ZipFile(io.BytesIO(buffer)) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                target = (base / info.filename).resolve()
                if not target.is_relative_to(base):
                    raise ConversionError(
                        ConversionErrorCode.INVALID_CONTAINER,
                        f"USDZ member escapes the package: {info.filename}",
                    )
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(archive.read(info))
                if root_layer is None and info.filename.lower().endswith(USD_LAYER_SUFFIXES):
                    root_layer = target
    except _ARCHIVE_ERRORS as exc:
        raise _unreadable(exc) from exc

    if root_layer is None:
        raise ConversionError(ConversionErrorCode.INVALID_CONTAINER, "No USD layer found in USDZ archive")
    return root_layer
