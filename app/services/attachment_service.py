"""
Attachment Registrar — upload files and record their metadata on a notice.

Uploads go to the ``attachments`` bucket under
``notice_attachments/<unix-ms>-<6 random chars>.<ext>``. Attachment rows
are only created inside the notice-create transaction and never mutated.
"""

from __future__ import annotations

import logging
import os
import secrets
import string
import time

from flask import current_app
from werkzeug.utils import secure_filename

from app.core.exceptions import TransientIOError, ValidationError
from app.integrations.storage_gateway import ObjectStore
from app.models import db
from app.models.notice import ATTACHMENT_FILE_TYPES, Notice, NoticeAttachment

logger = logging.getLogger(__name__)

BUCKET_NAME = "attachments"
PATH_PREFIX = "notice_attachments"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024

_ALPHABET = string.ascii_lowercase + string.digits


def classify_file_type(mime_type: str | None) -> str:
    """Coarse attachment type from a MIME type."""
    mime_type = (mime_type or "").lower()
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    return "document"


def _storage_path(file_name: str) -> str:
    safe = secure_filename(file_name) or "file"
    _, ext = os.path.splitext(safe)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    stem = f"{int(time.time() * 1000)}-{suffix}"
    return f"{PATH_PREFIX}/{stem}{ext.lower()}"


def upload_attachment(
    store: ObjectStore,
    file_name: str,
    data: bytes,
    mime_type: str | None = None,
) -> dict:
    """Store one file and return its attachment descriptor.

    Returns:
        {"file_name", "file_url", "file_type", "mime_type", "file_size", "storage_path"}

    Raises:
        ValidationError: file is empty-named or over the size limit.
        TransientIOError: the object store refused the write.
    """
    if not file_name:
        raise ValidationError("file name is required")
    max_bytes = current_app.config.get("ATTACHMENT_MAX_BYTES", DEFAULT_MAX_BYTES)
    if len(data) > max_bytes:
        raise ValidationError(
            f"File size must be less than {max_bytes // (1024 * 1024)}MB",
            details={"file_name": file_name, "file_size": len(data)},
        )

    mime_type = mime_type or "application/octet-stream"
    path = _storage_path(file_name)
    result = store.upload(BUCKET_NAME, path, data, content_type=mime_type)
    if not result.ok:
        logger.warning("Attachment upload failed for %s: %s", file_name, result.error)
        raise TransientIOError("storage.upload", f"Upload failed: {result.error}")

    return {
        "file_name": file_name,
        "file_url": store.get_public_url(BUCKET_NAME, path),
        "file_type": classify_file_type(mime_type),
        "mime_type": mime_type,
        "file_size": len(data),
        "storage_path": path,
    }


def validate_descriptors(descriptors: list[dict] | None) -> list[dict]:
    """Check already-uploaded attachment descriptors before the create transaction."""
    cleaned = []
    for i, d in enumerate(descriptors or []):
        if not isinstance(d, dict):
            raise ValidationError(f"attachments[{i}] must be an object")
        missing = [k for k in ("file_name", "file_url", "mime_type") if not d.get(k)]
        if missing:
            raise ValidationError(
                f"attachments[{i}] is missing {', '.join(missing)}",
                details={f"attachments[{i}]": missing},
            )
        size = d.get("file_size")
        if size is not None and (not isinstance(size, int) or size < 0):
            raise ValidationError(f"attachments[{i}].file_size must be a non-negative integer")
        file_type = d.get("file_type") or classify_file_type(str(d["mime_type"]))
        if file_type not in ATTACHMENT_FILE_TYPES:
            raise ValidationError(
                f"attachments[{i}].file_type must be one of: {', '.join(ATTACHMENT_FILE_TYPES)}",
                details={f"attachments[{i}]": ["file_type"]},
            )
        cleaned.append({
            "file_name": str(d["file_name"])[:255],
            "file_url": str(d["file_url"]),
            "mime_type": str(d["mime_type"]),
            "file_type": file_type,
            "file_size": size,
        })
    return cleaned


def discard_uploads(store: ObjectStore, descriptors: list[dict]) -> int:
    """Remove objects written by ``upload_attachment`` for a submission that failed.

    Best effort: a failed delete is logged and the rest still run.
    Returns the number of objects removed.
    """
    removed = 0
    for d in descriptors:
        path = d.get("storage_path")
        if not path:
            continue
        result = store.delete(BUCKET_NAME, path)
        if result.ok:
            removed += 1
        else:
            logger.warning("Could not remove orphaned upload %s: %s", path, result.error)
    if removed:
        logger.info("Removed %d upload(s) left by a failed submission", removed)
    return removed


def register_attachments(notice: Notice, descriptors: list[dict]) -> list[NoticeAttachment]:
    """Add attachment rows for a flushed notice. The caller commits."""
    rows = []
    for d in descriptors:
        row = NoticeAttachment(
            notice_id=notice.id,
            file_name=d["file_name"],
            file_url=d["file_url"],
            file_type=d.get("file_type") or classify_file_type(d["mime_type"]),
            mime_type=d["mime_type"],
            file_size=d.get("file_size"),
        )
        db.session.add(row)
        rows.append(row)
    if rows:
        db.session.flush()
    return rows
