"""
Sync activity log: durable record of sync attempts and media uploads.

Every entry written here is client-visible (``GET /sync-logs``), so error
text is always passed through ``safe_error_message`` first. Raw exception
text goes to the server log only.
"""

from __future__ import annotations

import logging
from collections import Counter

from sqlalchemy.exc import IntegrityError

from fieldsync.core.exceptions import NotFoundError, PermissionDeniedError
from fieldsync.models import db
from fieldsync.models.audit import SYNC_ENTITY_TYPE, ActivityLog, write_activity

logger = logging.getLogger(__name__)

SYNC_CONFLICT_MESSAGE = "Sync conflict - data already exists"
NOT_FOUND_MESSAGE = "Data not found"
PERMISSION_MESSAGE = "Permission denied"
GENERIC_SYNC_MESSAGE = "Synchronization error occurred"


def safe_error_message(exc: BaseException) -> str:
    """Map any exception onto the small client-safe vocabulary."""
    text = str(exc).lower()
    if isinstance(exc, IntegrityError) or "unique" in text:
        return SYNC_CONFLICT_MESSAGE
    if isinstance(exc, NotFoundError) or "not found" in text:
        return NOT_FOUND_MESSAGE
    if isinstance(exc, PermissionDeniedError) or "permission" in text:
        return PERMISSION_MESSAGE
    return GENERIC_SYNC_MESSAGE


# ── Sync attempts ────────────────────────────────────────────────────────────

def record_sync_outcome(
    organization_id: int,
    user_id: int,
    *,
    update_count: int,
    results: list[dict],
    conflicts: list[dict],
    duration_ms: int,
) -> ActivityLog:
    """Write the one summary entry for a processed batch (flush only)."""
    partial = bool(conflicts)
    return write_activity(
        organization_id=organization_id,
        user_id=user_id,
        action_type="field_app_sync_partial" if partial else "field_app_sync_success",
        entity_type=SYNC_ENTITY_TYPE,
        description=(
            f"Field app sync completed with {len(conflicts)} conflicts"
            if partial else "Field app sync completed successfully"
        ),
        details={
            "updateCount": update_count,
            "successCount": len(results),
            "conflictCount": len(conflicts),
            "conflicts": conflicts,
            "duration": duration_ms,
            "updatedTypes": dict(Counter(r["type"] for r in results)),
        },
    )


def record_sync_failure(
    organization_id: int,
    user_id: int,
    *,
    error: str,
    update_count: int,
    duration_ms: int,
    description: str | None = None,
    error_type: str | None = None,
) -> ActivityLog:
    """Write a ``field_app_sync_failed`` entry. ``error`` must already be sanitised."""
    details = {
        "error": error,
        "updateCount": update_count,
        "duration": duration_ms,
    }
    if error_type:
        details["errorType"] = error_type
    return write_activity(
        organization_id=organization_id,
        user_id=user_id,
        action_type="field_app_sync_failed",
        entity_type=SYNC_ENTITY_TYPE,
        description=description or f"Field app sync failed: {error}",
        details=details,
    )


def sync_log_query(organization_id: int, user_id: int):
    """The caller's own sync entries, newest first."""
    return (
        ActivityLog.query_for_organization(organization_id)
        .filter(
            ActivityLog.user_id == user_id,
            ActivityLog.entity_type == SYNC_ENTITY_TYPE,
        )
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
    )


# ── Uploads ──────────────────────────────────────────────────────────────────

def record_upload(
    organization_id: int,
    user_id: int,
    *,
    action: str,
    work_item_id: int,
    file_name: str,
    file_size: int,
    step_id=None,
    step_index: int | None = None,
    extra: dict | None = None,
) -> ActivityLog:
    """``file_upload`` entry; ``action`` is photo_uploaded / audio_duplicate / …"""
    kind = "Audio recording" if action.startswith("audio") else "Photo"
    verb = "re-sent (duplicate)" if action.endswith("duplicate") else "uploaded"
    details = {
        "action": action,
        "fileName": file_name,
        "fileSize": file_size,
        "stepId": step_id,
        "stepIndex": step_index,
    }
    details.update(extra or {})
    return write_activity(
        organization_id=organization_id,
        user_id=user_id,
        action_type="file_upload",
        entity_type="work_item",
        entity_id=work_item_id,
        description=f"{kind} {verb} from field app: {file_name}",
        details=details,
    )


def record_upload_failure(
    organization_id: int,
    user_id: int,
    *,
    kind: str,
    work_item_id,
    file_name: str | None,
    exc: BaseException,
) -> None:
    """Best-effort ``file_upload_failed`` entry in its own transaction."""
    try:
        db.session.rollback()
        write_activity(
            organization_id=organization_id,
            user_id=user_id,
            action_type="file_upload",
            entity_type="work_item",
            entity_id=work_item_id,
            description=f"{kind.capitalize()} upload failed: {file_name or 'unnamed file'}",
            details={
                "action": "file_upload_failed",
                "kind": kind,
                "fileName": file_name,
                "error": safe_error_message(exc),
                "errorType": type(exc).__name__,
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Could not record failed %s upload", kind)
