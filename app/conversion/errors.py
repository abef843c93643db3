"""Coded conversion failures and the messages shown to end users."""

from __future__ import annotations

from enum import Enum

from app.core.exceptions import AppError


class ConversionErrorCode(str, Enum):
    INVALID_CONTAINER = "InvalidContainer"
    UNSUPPORTED_SCHEMA = "UnsupportedSchema"
    FILE_TOO_LARGE = "FileTooLarge"
    EMPTY_GEOMETRY = "EmptyGeometry"
    UNKNOWN = "Unknown"


USER_MESSAGES: dict[ConversionErrorCode, str] = {
    ConversionErrorCode.INVALID_CONTAINER: (
        "The uploaded file is not a valid USDZ package. Export the scan again from the app."
    ),
    ConversionErrorCode.UNSUPPORTED_SCHEMA: (
        "This scan uses a USD layout we cannot read yet. Try re-exporting it as a RoomPlan capture."
    ),
    ConversionErrorCode.FILE_TOO_LARGE: (
        "The scan file is too large to convert. Capture a smaller area or reduce scan detail."
    ),
    ConversionErrorCode.EMPTY_GEOMETRY: (
        "No room geometry was found in this scan. Make sure the capture finished before exporting."
    ),
    ConversionErrorCode.UNKNOWN: "The scan could not be converted. Please try again later.",
}


class ConversionError(AppError):
    """A conversion failure tagged with its taxonomy code.

    ``str(error)`` is the internal diagnostic; ``user_message`` is the text
    end users see.
    """

    def __init__(self, code: ConversionErrorCode, message: str) -> None:
        super().__init__(message, detail=USER_MESSAGES[code])
        self.code = code

    @property
    def user_message(self) -> str:
        return self.detail

    def describe(self) -> str:
        return f"{self.user_message} ({self})"
