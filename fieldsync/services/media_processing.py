"""
Media processing queue: post-upload audio transcription and extraction.

Jobs run in background threads with their own app context, decoupled from
the upload request. Each attempt increments ``processing_attempts``; a
failed attempt is retried up to ``MEDIA_PROCESSING_MAX_ATTEMPTS`` and the
last failure is stored on the recording, where clients can observe it via
``GET /audio-recordings/<id>`` and trigger a reprocess.

With ``MEDIA_PROCESSING_INLINE`` (testing) jobs run synchronously on the
calling thread.
"""

import logging
import threading
import time

from flask import current_app

from fieldsync.integrations.transcription_gateway import TranscriptionError, TranscriptionGateway
from fieldsync.models import db
from fieldsync.models.media import AudioRecording
from fieldsync.utils.helpers import utcnow

logger = logging.getLogger(__name__)

# In-memory registry of running jobs (recording_id → Thread)
_running_jobs: dict[str, threading.Thread] = {}
_jobs_lock = threading.Lock()

GENERIC_PROCESSING_ERROR = "Audio processing failed"


def _default_gateway_factory(app):
    return TranscriptionGateway.from_config(app.config)


class MediaProcessingQueue:
    """Runs audio processing jobs off the request thread and tracks status."""

    def __init__(self, gateway_factory=None):
        # Callable(app) → gateway with transcribe() / extract_splice_data()
        self.gateway_factory = gateway_factory or _default_gateway_factory

    def submit(self, recording_id: str) -> None:
        """Queue processing for a committed ``AudioRecording``."""
        app = current_app._get_current_object()
        if app.config.get("MEDIA_PROCESSING_INLINE"):
            self._process(app, recording_id)
            return

        with _jobs_lock:
            if recording_id in _running_jobs:
                logger.info("Audio processing already running for %s", recording_id)
                return
            t = threading.Thread(
                target=self._execute_in_background,
                args=(app, recording_id),
                daemon=True,
            )
            _running_jobs[recording_id] = t
        t.start()

    def is_running(self, recording_id: str) -> bool:
        return recording_id in _running_jobs

    # ── Internal ──────────────────────────────────────────────────────────

    def _execute_in_background(self, app, recording_id: str):
        with app.app_context():
            try:
                self._process(app, recording_id)
            except Exception:
                logger.exception("MediaProcessingQueue: job %s crashed", recording_id)
                db.session.rollback()
            finally:
                with _jobs_lock:
                    _running_jobs.pop(recording_id, None)
                db.session.remove()

    def _process(self, app, recording_id: str):
        max_attempts = max(1, int(app.config.get("MEDIA_PROCESSING_MAX_ATTEMPTS", 3)))
        retry_delay = float(app.config.get("MEDIA_PROCESSING_RETRY_SECONDS", 2))
        gateway = self.gateway_factory(app)

        while True:
            recording = db.session.get(AudioRecording, recording_id)
            if recording is None:
                logger.warning("Audio recording %s vanished before processing", recording_id)
                return
            recording.processing_status = "processing"
            recording.processing_attempts = (recording.processing_attempts or 0) + 1
            attempt = recording.processing_attempts
            file_path = recording.file_path
            db.session.commit()

            try:
                transcription = gateway.transcribe(file_path)
                extracted = gateway.extract_splice_data(transcription)
            except Exception as exc:
                db.session.rollback()
                logger.warning(
                    "Audio processing attempt %d/%d failed for %s: %s",
                    attempt, max_attempts, recording_id, exc,
                )
                if attempt >= max_attempts:
                    self._mark_failed(recording_id, exc)
                    return
                if retry_delay:
                    time.sleep(retry_delay * attempt)
                continue

            recording = db.session.get(AudioRecording, recording_id)
            recording.transcription = transcription
            recording.extracted_data = extracted
            recording.processing_status = "completed"
            recording.processing_error = None
            recording.processed_at = utcnow()
            db.session.commit()
            logger.info(
                "Audio processed %s: %d splice connections",
                recording_id, len(extracted.get("connections", [])),
            )
            return

    def _mark_failed(self, recording_id: str, exc: Exception):
        recording = db.session.get(AudioRecording, recording_id)
        if recording is None:
            return
        recording.processing_status = "failed"
        # Provider detail stays in the logs
        recording.processing_error = (
            exc.client_message if isinstance(exc, TranscriptionError) else GENERIC_PROCESSING_ERROR
        )
        db.session.commit()
        logger.error("Audio processing gave up on %s after %d attempts: %s",
                     recording_id, recording.processing_attempts, exc)


media_queue = MediaProcessingQueue()
