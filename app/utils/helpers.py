"""Shared utility functions.

get_json_body:      request JSON or {} (never raises on bad bodies)
parse_datetime:     ISO-8601 string → aware UTC datetime (raises ValueError)
db_commit_or_raise: commit, translating driver errors into TransientIOError
"""
import logging
from datetime import datetime, timezone

from flask import request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.exceptions import TransientIOError, ValidationError
from app.models import db

logger = logging.getLogger(__name__)


def get_json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def parse_datetime(value):
    """Parse an ISO-8601 timestamp to an aware UTC datetime.

    Returns None for empty input. Naive values are taken as UTC.
    Accepts a trailing ``Z``.

    Raises:
        ValueError: unparseable input.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(
                f"Invalid timestamp {value!r}. Use ISO-8601, e.g. 2026-01-31T09:00:00Z."
            ) from exc
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime_field(data: dict, key: str):
    """parse_datetime for a request field, raising ValidationError on bad input."""
    try:
        return parse_datetime(data.get(key))
    except ValueError as exc:
        raise ValidationError(str(exc), details={key: "invalid timestamp"}) from exc


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_raise(operation: str, message: str = "Database error"):
    """Commit the current session; roll back and raise TransientIOError on failure.

    IntegrityError is logged at WARNING (constraint violation);
    anything else from the driver is logged with its traceback.
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit (%s): %s", operation, exc.orig)
        raise TransientIOError(operation, message) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error on commit (%s)", operation)
        raise TransientIOError(operation, message) from exc
