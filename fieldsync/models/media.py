"""
Field Sync Service
Audio recording model.

One row per uploaded voice note. Transcription and splice extraction run
off the request thread; ``processing_status`` tracks progress:

    pending → processing → completed
                         ↘ failed (after the final retry)
"""

import uuid
from datetime import datetime, timezone

from fieldsync.models import db
from fieldsync.models.base import OrganizationModel


def _utcnow():
    return datetime.now(timezone.utc)


def _uuid():
    return str(uuid.uuid4())


PROCESSING_STATUSES = ("pending", "processing", "completed", "failed")


class AudioRecording(OrganizationModel):
    __tablename__ = "audio_recordings"
    __table_args__ = (
        db.Index("idx_audio_work_item_step", "work_item_id", "step_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False,
    )
    step_id = db.Column(db.String(100), nullable=True)

    file_path = db.Column(db.String(500), nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    original_file_name = db.Column(db.String(255))
    mime_type = db.Column(db.String(100))
    file_size = db.Column(db.Integer)
    duration = db.Column(db.Float, nullable=True)

    transcription = db.Column(db.Text, nullable=True)
    extracted_data = db.Column(db.JSON, nullable=True)
    processing_status = db.Column(db.String(20), nullable=False, default="pending")
    processing_error = db.Column(db.Text, nullable=True)
    processing_attempts = db.Column(db.Integer, nullable=False, default=0)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    uploaded_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def reset_processing(self):
        self.processing_status = "pending"
        self.processing_error = None
        self.processing_attempts = 0
        self.processed_at = None

    def to_dict(self):
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "workItemId": self.work_item_id,
            "stepId": self.step_id,
            "fileName": self.file_name,
            "originalFileName": self.original_file_name,
            "mimeType": self.mime_type,
            "fileSize": self.file_size,
            "duration": self.duration,
            "transcription": self.transcription,
            "extractedData": self.extracted_data,
            "processingStatus": self.processing_status,
            "processingError": self.processing_error,
            "processingAttempts": self.processing_attempts,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
            "uploadedBy": self.uploaded_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AudioRecording {self.id} [{self.processing_status}]>"
