"""
Field app blueprint: offline sync surface for field technicians.

Endpoint groups:
  Working set        GET    /api/v1/field-app/available-items
  Offline package    POST   /api/v1/field-app/download
  Sync               POST   /api/v1/field-app/sync
                     GET    /api/v1/field-app/sync-logs
  Media              POST   /api/v1/field-app/upload-photo
                     POST   /api/v1/field-app/upload-audio
                     DELETE /api/v1/field-app/delete-photo
                     GET    /api/v1/field-app/media/<folder>/<name>
  Audio recordings   GET    /api/v1/field-app/audio-recordings/<id>
                     PATCH  /api/v1/field-app/audio-recordings/<id>
                     POST   /api/v1/field-app/audio-recordings/<id>/reprocess

Every endpoint requires a Bearer access token; organization and user come
from the token, never from the request body. Services own business logic
and commits.
"""

from __future__ import annotations

import logging
import os

from flask import Blueprint, current_app, jsonify, request, send_from_directory
from werkzeug.exceptions import HTTPException, NotFound

import fieldsync.services.media_ingest as media_ingest
from fieldsync.blueprints import paginate_query, require_identity
from fieldsync.core.exceptions import (
    ConflictError,
    NotFoundError,
    PayloadTooLargeError,
    PermissionDeniedError,
    UnsupportedMediaError,
    ValidationError,
)
from fieldsync.services import availability_filter, bulk_download, sync_log, sync_reconciler
from fieldsync.utils.errors import E, api_error

logger = logging.getLogger(__name__)

field_app_bp = Blueprint("field_app", __name__, url_prefix="/api/v1/field-app")


# ── Error handlers ────────────────────────────────────────────────────────────


@field_app_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    logger.info("Not found: %s", error)
    return api_error(E.NOT_FOUND, f"{error.resource} not found")


@field_app_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@field_app_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error))


@field_app_bp.errorhandler(PermissionDeniedError)
def _handle_permission(error: PermissionDeniedError):
    return api_error(E.FORBIDDEN, sync_log.PERMISSION_MESSAGE)


@field_app_bp.errorhandler(PayloadTooLargeError)
def _handle_too_large(error: PayloadTooLargeError):
    return api_error(
        E.PAYLOAD_TOO_LARGE,
        f"{error.kind.capitalize()} exceeds the {error.limit // (1024 * 1024)} MB limit",
        details={"size": error.size, "limit": error.limit},
    )


@field_app_bp.errorhandler(UnsupportedMediaError)
def _handle_unsupported_media(error: UnsupportedMediaError):
    return api_error(E.UNSUPPORTED_MEDIA, str(error))


@field_app_bp.errorhandler(sync_reconciler.SyncAbortedError)
def _handle_sync_aborted(error):
    return api_error(E.INTERNAL, "Failed to sync data")


@field_app_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in field_app endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════
# Working set
# ═════════════════════════════════════════════════════════════════════════


@field_app_bp.route("/available-items", methods=["GET"])
def available_items():
    """List work items the caller may take offline.

    Query params: assignedTo (me|team|all, repeatable), status (repeatable
    or comma-joined), dateRange (today|week|month|all), templateIds.
    """
    identity, err = require_identity()
    if err:
        return err
    user_id, organization_id = identity

    criteria = availability_filter.AvailabilityCriteria.from_query_args(
        request.args, availability_filter.active_statuses(),
    )
    items = availability_filter.list_available_items(organization_id, user_id, criteria)
    return jsonify({"items": items}), 200


@field_app_bp.route("/download", methods=["POST"])
def download():
    """Build an offline package.

    Body: {workItemIds: [...], includeTemplates?, includeAttachments?, offset?, limit?}
    """
    identity, err = require_identity()
    if err:
        return err
    _, organization_id = identity
    data = request.get_json(silent=True) or {}

    package = bulk_download.build_offline_package(
        organization_id,
        data.get("workItemIds"),
        include_templates=data.get("includeTemplates", True) is not False,
        include_attachments=data.get("includeAttachments", True) is not False,
        offset=data.get("offset"),
        limit=data.get("limit"),
    )
    return jsonify(package), 200


# ═════════════════════════════════════════════════════════════════════════
# Sync
# ═════════════════════════════════════════════════════════════════════════


@field_app_bp.route("/sync", methods=["POST"])
def sync():
    """Apply a batch of offline updates.

    Body: {updates: [{type, entityId, data}, ...]}
    Returns: {results, conflicts, newData: {workItems, templates}}
    """
    identity, err = require_identity()
    if err:
        return err
    user_id, organization_id = identity
    payload = request.get_json(silent=True)

    result = sync_reconciler.reconcile(payload, organization_id, user_id)
    return jsonify(result), 200


@field_app_bp.route("/sync-logs", methods=["GET"])
def sync_logs():
    """The caller's own sync entries, newest first. Query params: limit, offset."""
    identity, err = require_identity()
    if err:
        return err
    user_id, organization_id = identity

    logs, total = paginate_query(sync_log.sync_log_query(organization_id, user_id))
    return jsonify({"logs": [entry.to_dict() for entry in logs], "total": total}), 200


# ═════════════════════════════════════════════════════════════════════════
# Media
# ═════════════════════════════════════════════════════════════════════════


def _form_work_item_id():
    work_item_id = request.form.get("workItemId")
    if not work_item_id:
        return None, api_error(E.VALIDATION_REQUIRED, "workItemId is required")
    return work_item_id, None


@field_app_bp.route("/upload-photo", methods=["POST"])
def upload_photo():
    """Multipart: file, workItemId, stepId?"""
    identity, err = require_identity()
    if err:
        return err
    user_id, organization_id = identity

    file = request.files.get("file")
    if file is None:
        return api_error(E.VALIDATION_REQUIRED, "No file uploaded")
    work_item_id, err = _form_work_item_id()
    if err:
        return err

    result = media_ingest.ingest_photo(
        organization_id, user_id, work_item_id, request.form.get("stepId") or None, file,
    )
    return jsonify(result), 200


@field_app_bp.route("/upload-audio", methods=["POST"])
def upload_audio():
    """Multipart: file, workItemId, stepId?, duration?"""
    identity, err = require_identity()
    if err:
        return err
    user_id, organization_id = identity

    file = request.files.get("file")
    if file is None:
        return api_error(E.VALIDATION_REQUIRED, "No file uploaded")
    work_item_id, err = _form_work_item_id()
    if err:
        return err

    result = media_ingest.ingest_audio(
        organization_id, user_id, work_item_id, request.form.get("stepId") or None, file,
        duration=request.form.get("duration"),
    )
    return jsonify(result), 200


@field_app_bp.route("/delete-photo", methods=["DELETE"])
def delete_photo():
    """Body: {workItemId, stepId (execution step id), photoIndex}"""
    identity, err = require_identity()
    if err:
        return err
    user_id, organization_id = identity
    data = request.get_json(silent=True) or {}

    result = media_ingest.delete_photo(
        organization_id, user_id,
        data.get("workItemId"), data.get("stepId"), data.get("photoIndex"),
    )
    return jsonify(result), 200


@field_app_bp.route("/media/<folder>/<path:filename>", methods=["GET"])
def get_media(folder, filename):
    _, err = require_identity()
    if err:
        return err
    if folder not in media_ingest.MEDIA_FOLDERS:
        raise NotFound()
    directory = os.path.join(current_app.config["UPLOAD_FOLDER"], folder)
    return send_from_directory(directory, filename)


# ═════════════════════════════════════════════════════════════════════════
# Audio recordings
# ═════════════════════════════════════════════════════════════════════════


@field_app_bp.route("/audio-recordings/<recording_id>", methods=["GET"])
def get_audio_recording(recording_id):
    identity, err = require_identity()
    if err:
        return err
    _, organization_id = identity
    recording = media_ingest.get_audio_recording(organization_id, recording_id)
    return jsonify({"audioRecording": recording.to_dict()}), 200


@field_app_bp.route("/audio-recordings/<recording_id>", methods=["PATCH"])
def update_audio_recording(recording_id):
    """Manual corrections. Body: {transcription?, extractedData?}"""
    identity, err = require_identity()
    if err:
        return err
    _, organization_id = identity
    data = request.get_json(silent=True) or {}

    recording = media_ingest.update_audio_recording(organization_id, recording_id, data)
    logger.info("Audio recording %s corrected", recording_id)
    return jsonify({"success": True, "audioRecording": recording.to_dict()}), 200


@field_app_bp.route("/audio-recordings/<recording_id>/reprocess", methods=["POST"])
def reprocess_audio_recording(recording_id):
    identity, err = require_identity()
    if err:
        return err
    _, organization_id = identity

    recording = media_ingest.reprocess_audio_recording(organization_id, recording_id)
    return jsonify({
        "success": True,
        "message": "Reprocessing started",
        "audioRecording": recording.to_dict(),
    }), 202
