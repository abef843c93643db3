from __future__ import annotations

from abc import ABC, abstractmethod
import logging
import os
from pathlib import Path
import threading
from typing import Any

from app.core.exceptions import ConfigurationError, ObjectNotFoundError, StorageError
from app.core.metrics import track_storage_call
from app.core.settings import Settings


logger = logging.getLogger(__name__)


class ObjectStore(ABC):
    """Blob storage addressed by (bucket, path).

    Buckets are provisioned lazily, once per process. Concurrent first uses
    may both try to create a bucket; backends treat "already exists" as
    success so the losing caller does not fail.
    """

    def __init__(self) -> None:
        self._ensured_buckets: set[str] = set()
        self._bucket_lock = threading.Lock()

    def ensure_bucket(self, bucket: str) -> None:
        with self._bucket_lock:
            if bucket in self._ensured_buckets:
                return
        self._create_bucket_if_missing(bucket)
        with self._bucket_lock:
            self._ensured_buckets.add(bucket)

    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        with track_storage_call("upload"):
            self.ensure_bucket(bucket)
            self._put(bucket, path, data, content_type)
        logger.info(
            "storage_upload",
            extra={"bucket": bucket, "object_path": path, "size_bytes": len(data)},
        )

    def download(self, bucket: str, path: str) -> bytes:
        with track_storage_call("download"):
            return self._get(bucket, path)

    def delete(self, bucket: str, paths: list[str]) -> list[str]:
        """Remove ``paths`` and return the ones that were actually deleted."""
        if not paths:
            return []
        with track_storage_call("delete"):
            return self._remove(bucket, paths)

    def signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str | None:
        if ttl_seconds <= 0:
            return None
        return self._sign(bucket, path, ttl_seconds)

    @abstractmethod
    def _create_bucket_if_missing(self, bucket: str) -> None:
        """Create ``bucket`` unless it exists; an existing bucket is not an error."""

    @abstractmethod
    def _put(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        """Write one object, replacing any previous content."""

    @abstractmethod
    def _get(self, bucket: str, path: str) -> bytes:
        """Read one object; raise ObjectNotFoundError when it is absent."""

    @abstractmethod
    def _remove(self, bucket: str, paths: list[str]) -> list[str]:
        """Delete objects and return the paths that existed."""

    def _sign(self, bucket: str, path: str, ttl_seconds: int) -> str | None:
        return None


def _error_status(exc: Exception) -> str:
    for attr in ("status", "status_code", "statusCode", "code"):
        value = getattr(exc, attr, None)
        if value is not None:
            return str(value)
    if exc.args and isinstance(exc.args[0], dict):
        payload = exc.args[0]
        return str(payload.get("statusCode") or payload.get("status") or "")
    return ""


def _is_not_found(exc: Exception) -> bool:
    return _error_status(exc) == "404" or "not found" in str(exc).lower()


def _is_already_exists(exc: Exception) -> bool:
    text = str(exc).lower()
    return _error_status(exc) == "409" or "already exists" in text or "duplicate" in text


class SupabaseObjectStore(ObjectStore):
    """Object store backed by Supabase Storage."""

    def __init__(self, client: Any, *, bucket_file_size_limit: int) -> None:
        super().__init__()
        self._client = client
        self._bucket_file_size_limit = bucket_file_size_limit

    def _create_bucket_if_missing(self, bucket: str) -> None:
        try:
            self._client.storage.get_bucket(bucket)
            return
        except Exception as exc:  # noqa: BLE001
            if not _is_not_found(exc):
                raise StorageError(f"failed to inspect bucket {bucket}: {exc}") from exc

        try:
            self._client.storage.create_bucket(
                bucket,
                options={"public": True, "file_size_limit": self._bucket_file_size_limit},
            )
            logger.info("storage_bucket_created", extra={"bucket": bucket})
        except Exception as exc:  # noqa: BLE001
            if not _is_already_exists(exc):
                raise StorageError(f"failed to create bucket {bucket}: {exc}") from exc

    def _put(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        try:
            self._client.storage.from_(bucket).upload(
                path=path,
                file=data,
                file_options={"content-type": content_type, "upsert": "true"},
            )
        except Exception as exc:  # noqa: BLE001
            raise StorageError(f"failed to upload {bucket}/{path}: {exc}") from exc

    def _get(self, bucket: str, path: str) -> bytes:
        try:
            data = self._client.storage.from_(bucket).download(path)
        except Exception as exc:  # noqa: BLE001
            if _is_not_found(exc):
                raise ObjectNotFoundError(f"{bucket}/{path}") from exc
            raise StorageError(f"failed to download {bucket}/{path}: {exc}") from exc
        if not data:
            raise ObjectNotFoundError(f"{bucket}/{path}")
        return data

    def _remove(self, bucket: str, paths: list[str]) -> list[str]:
        try:
            removed = self._client.storage.from_(bucket).remove(paths)
        except Exception as exc:  # noqa: BLE001
            raise StorageError(f"failed to delete from {bucket}: {exc}") from exc
        names = {item.get("name") for item in removed or [] if isinstance(item, dict)}
        return [path for path in paths if path in names]

    def _sign(self, bucket: str, path: str, ttl_seconds: int) -> str | None:
        try:
            response = self._client.storage.from_(bucket).create_signed_url(path, ttl_seconds)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "storage_signed_url_failed",
                extra={"bucket": bucket, "object_path": path, "error": str(exc)},
            )
            return None
        if isinstance(response, dict):
            return response.get("signedURL") or response.get("signedUrl")
        return None


class LocalObjectStore(ObjectStore):
    """Object store on the local filesystem: one directory per bucket."""

    def __init__(self, root_dir: str | os.PathLike[str]) -> None:
        super().__init__()
        self.root_dir = Path(root_dir)

    def _object_path(self, bucket: str, path: str) -> Path:
        bucket_dir = (self.root_dir / bucket).resolve()
        target = (bucket_dir / path.lstrip("/")).resolve()
        if not target.is_relative_to(bucket_dir):
            raise ObjectNotFoundError(f"{bucket}/{path}")
        return target

    def _create_bucket_if_missing(self, bucket: str) -> None:
        (self.root_dir / bucket).mkdir(parents=True, exist_ok=True)

    def _put(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        target = self._object_path(bucket, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f".{target.name}.tmp")
        tmp.write_bytes(data)
        os.replace(tmp, target)

    def _get(self, bucket: str, path: str) -> bytes:
        target = self._object_path(bucket, path)
        if not target.is_file():
            raise ObjectNotFoundError(f"{bucket}/{path}")
        return target.read_bytes()

    def _remove(self, bucket: str, paths: list[str]) -> list[str]:
        removed: list[str] = []
        for path in paths:
            try:
                self._object_path(bucket, path).unlink()
            except (FileNotFoundError, ObjectNotFoundError):
                continue
            except OSError as exc:
                raise StorageError(f"failed to delete {bucket}/{path}: {exc}") from exc
            removed.append(path)
        return removed


class LegacyFileStore:
    """Files addressed by a path relative to the media root.

    Paths may carry the public media prefix (``/media/models/x.glb``) or be
    bare relative paths (``models/x.glb``); both map to the same file.
    """

    def __init__(self, root_dir: str | os.PathLike[str], url_prefix: str):
        self.root_dir = Path(root_dir)
        self.url_prefix = url_prefix.rstrip("/")

    def _relative(self, path: str) -> str:
        if self.url_prefix and path.startswith(f"{self.url_prefix}/"):
            path = path[len(self.url_prefix) + 1:]
        return path.lstrip("/")

    def full_path(self, path: str) -> Path:
        root = self.root_dir.resolve()
        target = (root / self._relative(path)).resolve()
        if target == root or not target.is_relative_to(root):
            raise ObjectNotFoundError(path)
        return target

    def read(self, path: str) -> bytes:
        target = self.full_path(path)
        if not target.is_file():
            raise ObjectNotFoundError(path)
        return target.read_bytes()

    def write(self, path: str, data: bytes) -> str:
        """Write ``data`` and return the public path it is served under."""
        target = self.full_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return f"{self.url_prefix}/{self._relative(path)}"

    def delete(self, path: str) -> bool:
        try:
            self.full_path(path).unlink()
        except FileNotFoundError:
            return False
        return True

    def prune_parent(self, path: str) -> str | None:
        """Remove the file's directory if it is now empty; return it when removed."""
        directory = self.full_path(path).parent
        if directory == self.root_dir.resolve() or not directory.is_dir():
            return None
        if any(directory.iterdir()):
            return None
        directory.rmdir()
        return str(directory.relative_to(self.root_dir.resolve()))


_object_store: ObjectStore | None = None
_legacy_store: LegacyFileStore | None = None


def build_object_store(config: Settings) -> ObjectStore:
    if config.storage_backend == "supabase":
        from app.services.supabase_client import get_supabase

        return SupabaseObjectStore(
            get_supabase(config),
            bucket_file_size_limit=config.storage_bucket_file_size_limit,
        )
    if config.storage_backend == "local":
        return LocalObjectStore(Path(config.media_root) / "buckets")
    raise ConfigurationError(f"unknown STORAGE_BACKEND: {config.storage_backend}")


def init_storage(config: Settings) -> None:
    global _object_store, _legacy_store
    _object_store = build_object_store(config)
    _legacy_store = LegacyFileStore(config.media_root, config.media_url_prefix)


def get_object_store() -> ObjectStore:
    if _object_store is None:
        raise RuntimeError("Object store is not initialized")
    return _object_store


def get_legacy_store() -> LegacyFileStore:
    if _legacy_store is None:
        raise RuntimeError("Legacy file store is not initialized")
    return _legacy_store
