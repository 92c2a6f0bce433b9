"""
Object Store Gateway — bucket/path file storage with public URLs.

Contract (bucket/path object storage):
  upload(bucket, path, data, content_type=None) -> StorageResult
  delete(bucket, path) -> StorageResult
  get_public_url(bucket, path) -> str

``upload`` and ``delete`` never raise for storage failures; they return
a result whose ``error`` carries the message, and the calling service
decides how to surface it. ``upsert`` is off: uploading over an existing object fails.

LocalObjectStore keeps objects under ``<root>/<bucket>/<path>`` and
builds public URLs as ``<public_url>/<bucket>/<path>``.

Testability: construct LocalObjectStore(root=tmp_path) in tests instead
of letting ``get_object_store()`` read the app config.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Protocol

from flask import current_app

logger = logging.getLogger(__name__)


@dataclass
class StorageResult:
    ok: bool
    path: str | None = None
    error: str | None = None


class ObjectStore(Protocol):
    def upload(self, bucket: str, path: str, data: bytes,
               content_type: str | None = None) -> StorageResult: ...

    def delete(self, bucket: str, path: str) -> StorageResult: ...

    def get_public_url(self, bucket: str, path: str) -> str: ...


class LocalObjectStore:
    """Filesystem-backed object store."""

    def __init__(self, root: str, public_url: str = "/files") -> None:
        self.root = os.path.abspath(root)
        self.public_url = public_url.rstrip("/")

    def _resolve(self, bucket: str, path: str) -> str:
        full = os.path.abspath(os.path.join(self.root, bucket, path))
        if not full.startswith(self.root + os.sep):
            raise ValueError(f"Path escapes storage root: {bucket}/{path}")
        return full

    def upload(self, bucket: str, path: str, data: bytes,
               content_type: str | None = None) -> StorageResult:
        try:
            full = self._resolve(bucket, path)
        except ValueError as exc:
            return StorageResult(ok=False, error=str(exc))

        if os.path.exists(full):
            return StorageResult(ok=False, error="The resource already exists")
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "xb") as fh:
                fh.write(data)
        except OSError as exc:
            logger.warning("Object store upload failed: %s/%s: %s", bucket, path, exc)
            return StorageResult(ok=False, error=exc.strerror or str(exc))

        logger.debug("Stored %d bytes at %s/%s (%s)", len(data), bucket, path, content_type)
        return StorageResult(ok=True, path=path)

    def delete(self, bucket: str, path: str) -> StorageResult:
        try:
            full = self._resolve(bucket, path)
        except ValueError as exc:
            return StorageResult(ok=False, error=str(exc))

        try:
            os.remove(full)
        except FileNotFoundError:
            return StorageResult(ok=False, error="Object not found")
        except OSError as exc:
            logger.warning("Object store delete failed: %s/%s: %s", bucket, path, exc)
            return StorageResult(ok=False, error=exc.strerror or str(exc))

        logger.debug("Deleted %s/%s", bucket, path)
        return StorageResult(ok=True, path=path)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_url}/{bucket}/{path}"

    def open(self, bucket: str, path: str):
        """Open a stored object for reading (used by the file-serving route)."""
        return open(self._resolve(bucket, path), "rb")


def get_object_store() -> LocalObjectStore:
    """Object store configured for the current app (cached on extensions)."""
    store = current_app.extensions.get("object_store")
    if store is None:
        store = LocalObjectStore(
            root=current_app.config["UPLOAD_FOLDER"],
            public_url=current_app.config.get("STORAGE_PUBLIC_URL", "/files"),
        )
        current_app.extensions["object_store"] = store
    return store
