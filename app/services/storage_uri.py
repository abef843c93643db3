"""Provider-neutral addressing for stored blobs.

A blob in object storage is written as ``supabase://{bucket}/{objectPath}``.
Anything without that prefix is a legacy value (a path relative to the media
root or an already-resolved absolute URL) and is passed through untouched.
``locate`` is the one place raw strings become a typed location; downstream
code branches on ``StorageUri`` versus ``LegacyPath`` instead of re-checking
prefixes.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Protocol


logger = logging.getLogger(__name__)

STORAGE_URI_SCHEME = "supabase://"

_UNSAFE_SEGMENT_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


@dataclass(frozen=True)
class StorageUri:
    bucket: str
    path: str

    def __str__(self) -> str:
        return to_uri(self.bucket, self.path)


@dataclass(frozen=True)
class LegacyPath:
    value: str

    @property
    def is_absolute_url(self) -> bool:
        return self.value.startswith(("http://", "https://"))


StorageLocation = StorageUri | LegacyPath


@dataclass(frozen=True)
class ResolvedLocation:
    raw_path: str | None
    public_url: str | None = None
    signed_url: str | None = None
    bucket: str | None = None
    object_path: str | None = None


class SignedUrlIssuer(Protocol):
    def signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str | None: ...


def to_uri(bucket: str, path: str) -> str:
    return f"{STORAGE_URI_SCHEME}{bucket}/{path}"


def parse_uri(raw: str | None) -> StorageUri | None:
    """Split a storage URI into bucket and object path.

    Returns None for empty input, for strings without the scheme and for URIs
    whose bucket or path is empty. The split happens on the first ``/`` after
    the scheme, so object paths may themselves contain slashes.
    """
    if not raw or not raw.startswith(STORAGE_URI_SCHEME):
        return None
    remainder = raw[len(STORAGE_URI_SCHEME):]
    bucket, sep, path = remainder.partition("/")
    if not bucket or not sep or not path:
        return None
    return StorageUri(bucket=bucket, path=path)


def is_storage_uri(raw: str | None) -> bool:
    return parse_uri(raw) is not None


def looks_like_storage_uri(raw: str | None) -> bool:
    """True when ``raw`` carries the scheme, whether or not it parses."""
    return bool(raw) and raw.startswith(STORAGE_URI_SCHEME)


def locate(raw: str | None) -> StorageLocation | None:
    if not raw:
        return None
    parsed = parse_uri(raw)
    if parsed is not None:
        return parsed
    return LegacyPath(raw)


def sanitize_segment(value: str) -> str:
    return _UNSAFE_SEGMENT_CHARS.sub("_", value)


def join_storage_path(*segments: str | None) -> str:
    parts = []
    for segment in segments:
        if not segment:
            continue
        trimmed = segment.strip("/")
        if trimmed:
            parts.append(trimmed)
    return "/".join(parts)


def _owner_segment(user_id: object | None) -> str:
    return sanitize_segment(str(user_id)) if user_id else "anonymous"


def build_ios_upload_path(prefix: str, user_id: object | None, scene_id: str, file_name: str) -> str:
    return join_storage_path(prefix, _owner_segment(user_id), sanitize_segment(scene_id), file_name)


def build_json_metadata_path(prefix: str, user_id: object | None, scene_id: str, file_name: str) -> str:
    return join_storage_path(prefix, _owner_segment(user_id), sanitize_segment(scene_id), file_name)


def build_glb_path(prefix: str, user_id: object | None, scene_id: str, file_name: str) -> str:
    return join_storage_path(prefix, _owner_segment(user_id), sanitize_segment(scene_id), file_name)


def legacy_json_path_for(usdz_path: str) -> str | None:
    """Guess the sidecar location by swapping the extension.

    Only ``scripts/backfill_json_paths.py`` uses this. At runtime the stored
    ``json_path`` column is authoritative.
    """
    location = locate(usdz_path)
    if location is None:
        return None
    if isinstance(location, StorageUri):
        path = location.path
        if not path.lower().endswith(".usdz"):
            return None
        return to_uri(location.bucket, f"{path[:-5]}.json")
    if not location.value.lower().endswith(".usdz"):
        return None
    return f"{location.value[:-5]}.json"


class StorageResolver:
    """Turns stored locations into URLs a client can fetch."""

    def __init__(
        self,
        issuer: SignedUrlIssuer | None,
        *,
        public_base_url: str | None,
        signed_url_ttl: int,
    ) -> None:
        self._issuer = issuer
        self._public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self._signed_url_ttl = signed_url_ttl

    def public_url(self, bucket: str, path: str) -> str | None:
        if not self._public_base_url:
            return None
        return f"{self._public_base_url}/{bucket}/{path}"

    def signed_url(self, bucket: str, path: str) -> str | None:
        if self._issuer is None or self._signed_url_ttl <= 0:
            return None
        return self._issuer.signed_url(bucket, path, self._signed_url_ttl)

    def resolve(self, raw: str | None, *, include_signed: bool = True) -> ResolvedLocation:
        location = locate(raw)
        if location is None:
            return ResolvedLocation(raw_path=raw)
        if isinstance(location, LegacyPath):
            return ResolvedLocation(raw_path=raw, public_url=location.value)
        signed = self.signed_url(location.bucket, location.path) if include_signed else None
        return ResolvedLocation(
            raw_path=raw,
            public_url=self.public_url(location.bucket, location.path),
            signed_url=signed,
            bucket=location.bucket,
            object_path=location.path,
        )
