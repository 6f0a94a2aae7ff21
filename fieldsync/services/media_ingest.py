"""
Media ingest pipeline: photo and audio uploads from field clients.

Flow per upload:
  1. Type check (extension + declared MIME type) before anything is written.
  2. Persist under a generated, collision-resistant name.
  3. Size check on the written file.
  4. Resolve the target step and look for a duplicate ``(originalFileName,
     size)`` entry; a duplicate deletes the new file and reports the
     existing entry, so client retries are idempotent.
  5. Append an inline entry via the evidence merger, log the upload and,
     for audio, queue transcription.

Any failure after step 2 removes the written file before the error
propagates.
"""

from __future__ import annotations

import base64
import logging
import os
import re
import uuid
from dataclasses import dataclass

from flask import current_app
from werkzeug.utils import secure_filename

from fieldsync.core.exceptions import (
    NotFoundError,
    PayloadTooLargeError,
    UnsupportedMediaError,
    ValidationError,
)
from fieldsync.models import db
from fieldsync.models.audit import write_activity
from fieldsync.models.media import AudioRecording
from fieldsync.models.work_item import WorkflowExecutionStep, WorkItem
from fieldsync.services import sync_log
from fieldsync.services.evidence import AUDIO_RECORDINGS, PHOTOS, Evidence
from fieldsync.services.media_processing import media_queue
from fieldsync.services.workflow_service import get_execution, get_template
from fieldsync.utils.helpers import as_int, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MediaKind:
    name: str
    folder: str
    evidence_key: str
    pattern: re.Pattern
    max_bytes_key: str
    # Photos need both extension and MIME type to match; audio either
    require_both: bool

    def accepts(self, filename: str, mime_type: str | None) -> bool:
        ext = os.path.splitext(filename or "")[1].lower().lstrip(".")
        ext_ok = bool(ext) and bool(self.pattern.search(ext))
        mime_ok = bool(mime_type) and bool(self.pattern.search(mime_type.lower()))
        return (ext_ok and mime_ok) if self.require_both else (ext_ok or mime_ok)


PHOTO = MediaKind(
    name="photo",
    folder="field-photos",
    evidence_key=PHOTOS,
    pattern=re.compile(r"jpeg|jpg|png|heic|webp"),
    max_bytes_key="PHOTO_MAX_BYTES",
    require_both=True,
)

AUDIO = MediaKind(
    name="audio",
    folder="field-audio",
    evidence_key=AUDIO_RECORDINGS,
    pattern=re.compile(r"webm|m4a|mp3|wav|ogg|aac"),
    max_bytes_key="AUDIO_MAX_BYTES",
    require_both=False,
)

MEDIA_FOLDERS = {PHOTO.folder, AUDIO.folder}


# ═════════════════════════════════════════════════════════════════════════════
# Storage
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StoredFile:
    path: str
    file_name: str
    original_name: str
    size: int
    mime_type: str
    url: str


class MediaStorage:
    """Writes uploads under ``<root>/<kind folder>/<kind>-<uuid><ext>``."""

    def __init__(self, root: str):
        self.root = root

    @classmethod
    def from_app(cls) -> "MediaStorage":
        return cls(current_app.config["UPLOAD_FOLDER"])

    def folder_path(self, folder: str) -> str:
        return os.path.join(self.root, folder)

    def save(self, file_storage, kind: MediaKind) -> StoredFile:
        original = file_storage.filename or ""
        ext = os.path.splitext(secure_filename(original))[1].lower()
        file_name = f"{kind.name}-{uuid.uuid4().hex}{ext}"
        directory = self.folder_path(kind.folder)
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, file_name)
        file_storage.save(path)
        return StoredFile(
            path=path,
            file_name=file_name,
            original_name=original,
            size=os.path.getsize(path),
            mime_type=file_storage.mimetype or "application/octet-stream",
            url=f"/api/v1/field-app/media/{kind.folder}/{file_name}",
        )

    def delete(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Could not remove stored media %s", path, exc_info=True)

    @staticmethod
    def data_uri(stored: StoredFile) -> str:
        with open(stored.path, "rb") as fh:
            encoded = base64.b64encode(fh.read()).decode("ascii")
        return f"data:{stored.mime_type};base64,{encoded}"


# ═════════════════════════════════════════════════════════════════════════════
# Step resolution
# ═════════════════════════════════════════════════════════════════════════════

def _get_work_item(organization_id: int, work_item_id) -> WorkItem:
    item_id = as_int(work_item_id)
    if item_id is None:
        raise ValidationError("workItemId is required")
    item = WorkItem.query_for_organization(organization_id).filter_by(id=item_id).first()
    if item is None:
        raise NotFoundError(resource="WorkItem", resource_id=item_id)
    return item


def resolve_step(organization_id: int, work_item: WorkItem, step_id) -> WorkflowExecutionStep:
    """Find the execution step addressed by a template step id or a step index.

    Raises:
        NotFoundError: no execution, or no step matches.
    """
    execution = get_execution(organization_id, work_item.id)
    if execution is None:
        raise NotFoundError(resource="Workflow execution", resource_id=work_item.id)

    step_key = str(step_id)
    index = -1
    template = get_template(organization_id, work_item.workflow_template_id)
    if template is not None:
        index = template.step_index_of(step_key)
    if index < 0:
        for step in execution.steps:
            if (step.evidence or {}).get("stepId") == step_key:
                return step
        numeric = as_int(step_key)
        index = numeric if numeric is not None else -1

    step = WorkflowExecutionStep.query.filter_by(
        execution_id=execution.id, step_index=index,
    ).first()
    if step is None:
        raise NotFoundError(resource="Step record", resource_id=step_key)
    return step


# ═════════════════════════════════════════════════════════════════════════════
# Ingest
# ═════════════════════════════════════════════════════════════════════════════

def _check_size(stored: StoredFile, kind: MediaKind):
    limit = current_app.config[kind.max_bytes_key]
    if stored.size > limit:
        raise PayloadTooLargeError(kind.name, stored.size, limit)


def _ingest(kind: MediaKind, organization_id, user_id, work_item_id, step_id, file_storage, attach):
    if file_storage is None or not file_storage.filename:
        raise ValidationError("No file uploaded")
    if not kind.accepts(file_storage.filename, file_storage.mimetype):
        raise UnsupportedMediaError(
            f"Unsupported {kind.name} type: {file_storage.mimetype or 'unknown'}"
        )

    storage = MediaStorage.from_app()
    stored = None
    try:
        stored = storage.save(file_storage, kind)
        _check_size(stored, kind)
        work_item = _get_work_item(organization_id, work_item_id)
        result = attach(storage, stored, work_item)
        db.session.commit()
        return result
    except Exception as exc:
        if stored is not None:
            storage.delete(stored.path)
        logger.warning(
            "%s upload failed work_item=%s step=%s: %s",
            kind.name.capitalize(), work_item_id, step_id, exc,
            extra={"organization_id": organization_id, "user_id": user_id},
        )
        sync_log.record_upload_failure(
            organization_id, user_id,
            kind=kind.name,
            work_item_id=as_int(work_item_id),
            file_name=file_storage.filename,
            exc=exc,
        )
        raise


def _media_entry(storage: MediaStorage, stored: StoredFile, entry_id: str, user_id: int) -> dict:
    return {
        "id": entry_id,
        "data": storage.data_uri(stored),
        "fileName": stored.file_name,
        "originalFileName": stored.original_name,
        "size": stored.size,
        "mimeType": stored.mime_type,
        "url": stored.url,
        "uploadedAt": utcnow().isoformat(),
        "uploadedBy": user_id,
    }


def _attach_to_step(kind, storage, stored, step, entry, *, organization_id, user_id,
                    work_item_id, step_id, extra_log=None):
    """Append ``entry`` unless a duplicate exists; returns the existing entry on duplicate."""
    evidence = Evidence.from_dict(step.evidence)
    existing = evidence.find_duplicate(kind.evidence_key, stored.original_name, stored.size)
    if existing is not None:
        storage.delete(stored.path)
        sync_log.record_upload(
            organization_id, user_id,
            action=f"{kind.name}_duplicate",
            work_item_id=work_item_id,
            file_name=stored.original_name,
            file_size=stored.size,
            step_id=step_id,
            step_index=step.step_index,
        )
        logger.info(
            "Duplicate %s skipped work_item=%s step=%s name=%s size=%d",
            kind.name, work_item_id, step_id, stored.original_name, stored.size,
        )
        return existing

    step.evidence = evidence.append_media(kind.evidence_key, entry).to_dict()
    sync_log.record_upload(
        organization_id, user_id,
        action=f"{kind.name}_uploaded",
        work_item_id=work_item_id,
        file_name=stored.original_name,
        file_size=stored.size,
        step_id=step_id,
        step_index=step.step_index,
        extra=extra_log,
    )
    return None


def ingest_photo(organization_id: int, user_id: int, work_item_id, step_id, file_storage) -> dict:
    """Store a photo and attach it to the step's ``photos`` evidence."""

    def attach(storage, stored, work_item):
        photo_id = f"photo-{uuid.uuid4().hex}"
        result = {
            "success": True,
            "photoId": photo_id,
            "url": stored.url,
            "fileName": stored.file_name,
            "originalFileName": stored.original_name,
            "size": stored.size,
            "workItemId": work_item.id,
            "stepId": step_id,
        }
        if not step_id:
            return result

        step = resolve_step(organization_id, work_item, step_id)
        entry = _media_entry(storage, stored, photo_id, user_id)
        existing = _attach_to_step(
            PHOTO, storage, stored, step, entry,
            organization_id=organization_id, user_id=user_id,
            work_item_id=work_item.id, step_id=step_id,
        )
        result["stepIndex"] = step.step_index
        if existing is not None:
            result.update(
                duplicate=True,
                photoId=existing.get("id") or f"existing-{stored.original_name}",
                url=existing.get("url"),
                fileName=existing.get("fileName"),
                message="Photo already exists",
            )
        return result

    return _ingest(PHOTO, organization_id, user_id, work_item_id, step_id, file_storage, attach)


def ingest_audio(organization_id: int, user_id: int, work_item_id, step_id, file_storage,
                 duration=None) -> dict:
    """Store a voice note, attach it to ``audioRecordings`` and queue processing."""
    seconds = _parse_duration(duration)
    queued = []

    def attach(storage, stored, work_item):
        recording_id = str(uuid.uuid4())
        result = {
            "success": True,
            "audioId": recording_id,
            "url": stored.url,
            "fileName": stored.file_name,
            "originalFileName": stored.original_name,
            "size": stored.size,
            "duration": seconds,
            "workItemId": work_item.id,
            "stepId": step_id,
        }

        step = resolve_step(organization_id, work_item, step_id) if step_id else None
        if step is not None:
            entry = _media_entry(storage, stored, recording_id, user_id)
            entry["audioId"] = recording_id
            entry["duration"] = seconds
            existing = _attach_to_step(
                AUDIO, storage, stored, step, entry,
                organization_id=organization_id, user_id=user_id,
                work_item_id=work_item.id, step_id=step_id,
                extra_log={"duration": seconds},
            )
            result["stepIndex"] = step.step_index
            if existing is not None:
                result.update(
                    duplicate=True,
                    audioId=existing.get("audioId") or existing.get("id")
                    or f"existing-{stored.original_name}",
                    url=existing.get("url"),
                    fileName=existing.get("fileName"),
                    message="Audio already exists",
                )
                return result

        db.session.add(AudioRecording(
            id=recording_id,
            organization_id=organization_id,
            work_item_id=work_item.id,
            step_id=str(step_id) if step_id else None,
            file_path=stored.path,
            file_name=stored.file_name,
            original_file_name=stored.original_name,
            mime_type=stored.mime_type,
            file_size=stored.size,
            duration=seconds,
            uploaded_by=user_id,
        ))
        queued.append(recording_id)
        return result

    result = _ingest(AUDIO, organization_id, user_id, work_item_id, step_id, file_storage, attach)
    # Response is already built; processing outcome never changes it
    for recording_id in queued:
        try:
            media_queue.submit(recording_id)
        except Exception:
            logger.exception("Could not queue audio processing for %s", recording_id)
    return result


def _parse_duration(value) -> float:
    if value in (None, ""):
        return 0
    try:
        return max(float(value), 0)
    except (TypeError, ValueError):
        return 0


# ═════════════════════════════════════════════════════════════════════════════
# Deletion
# ═════════════════════════════════════════════════════════════════════════════

def delete_photo(organization_id: int, user_id: int, work_item_id, step_id, photo_index) -> dict:
    """Remove one photo entry by index. Stored bytes are left untouched.

    Raises:
        ValidationError: missing ids or index out of range.
        NotFoundError: step not in this organization / work item.
    """
    item_id = as_int(work_item_id)
    step_pk = as_int(step_id)
    index = as_int(photo_index)
    if item_id is None or step_pk is None or index is None:
        raise ValidationError("workItemId, stepId, and photoIndex are required")

    step = (
        WorkflowExecutionStep.query_for_organization(organization_id)
        .filter_by(id=step_pk, work_item_id=item_id)
        .first()
    )
    if step is None:
        raise NotFoundError(resource="Step record", resource_id=step_pk)

    evidence = Evidence.from_dict(step.evidence)
    photos = evidence.media(PHOTOS)
    try:
        updated = evidence.remove_media(PHOTOS, index)
    except IndexError:
        raise ValidationError(
            "Invalid photo index",
            details={"photoIndex": index, "photoCount": len(photos)},
        )
    removed = photos[index]
    step.evidence = updated.to_dict()

    write_activity(
        organization_id=organization_id,
        user_id=user_id,
        action_type="deletion",
        entity_type="work_item",
        entity_id=item_id,
        description="Photo deleted from field app",
        details={
            "action": "photo_deleted",
            "stepId": step_pk,
            "stepIndex": step.step_index,
            "photoIndex": index,
            "fileName": removed.get("fileName") if isinstance(removed, dict) else None,
        },
    )
    db.session.commit()

    remaining = len(updated.media(PHOTOS))
    logger.info("Photo %d deleted from step %s (%d remaining)", index, step_pk, remaining)
    return {"success": True, "remainingPhotos": remaining}


# ═════════════════════════════════════════════════════════════════════════════
# Audio recordings
# ═════════════════════════════════════════════════════════════════════════════

def get_audio_recording(organization_id: int, recording_id: str) -> AudioRecording:
    recording = (
        AudioRecording.query_for_organization(organization_id)
        .filter_by(id=recording_id)
        .first()
    )
    if recording is None:
        raise NotFoundError(resource="Audio recording", resource_id=recording_id)
    return recording


def update_audio_recording(organization_id: int, recording_id: str, data: dict) -> AudioRecording:
    """Manual correction of ``transcription`` / ``extractedData``."""
    recording = get_audio_recording(organization_id, recording_id)
    if "transcription" in data:
        transcription = data["transcription"]
        if transcription is not None and not isinstance(transcription, str):
            raise ValidationError("transcription must be a string")
        recording.transcription = transcription
    if "extractedData" in data:
        extracted = data["extractedData"]
        if extracted is not None and not isinstance(extracted, dict):
            raise ValidationError("extractedData must be an object")
        recording.extracted_data = extracted
    db.session.commit()
    return recording


def reprocess_audio_recording(organization_id: int, recording_id: str) -> AudioRecording:
    recording = get_audio_recording(organization_id, recording_id)
    recording.reset_processing()
    db.session.commit()
    media_queue.submit(recording.id)
    return recording
