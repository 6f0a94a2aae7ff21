"""
Tests for the media ingest pipeline (photo + audio uploads).

Covers:
  - photo upload: stored file, inline evidence entry, activity entry
  - idempotent retry: same name + size → duplicate, evidence grows once
  - rejection: 415 type, 413 size, 404 step; written files removed on failure
  - DELETE /delete-photo: index validation, removal, organization scoping
  - audio upload: recording row, transcription via the processing queue,
    failure after retries, reprocess, manual correction
  - GET /media/<folder>/<name>: authenticated file serving
"""

import io
import threading
from unittest.mock import MagicMock

import pytest

from fieldsync.integrations.transcription_gateway import TranscriptionGateway
from fieldsync.models import db
from fieldsync.models.audit import ActivityLog
from fieldsync.models.auth import User
from fieldsync.models.media import AudioRecording
from fieldsync.models.work_item import WorkflowExecutionStep
from fieldsync.services import media_processing
from fieldsync.services.media_processing import media_queue

PHOTO_URL = "/api/v1/field-app/upload-photo"
AUDIO_URL = "/api/v1/field-app/upload-audio"
DELETE_URL = "/api/v1/field-app/delete-photo"

_RealThread = threading.Thread

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"chamber-lid" * 20
AUDIO_BYTES = b"RIFF" + b"voice-note" * 30


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture()
def upload(client, auth_headers):
    """POST a multipart upload; ``content`` is re-wrapped each call."""

    def _upload(url, name, content, mime, **form):
        data = {"file": (io.BytesIO(content), name, mime)}
        data.update({k: str(v) for k, v in form.items() if v is not None})
        return client.post(url, data=data, headers=auth_headers, content_type="multipart/form-data")

    return _upload


@pytest.fixture()
def photo_step(execution):
    """The execution step for the template's ``photos`` step (index 1)."""
    return WorkflowExecutionStep.query.filter_by(execution_id=execution.id, step_index=1).one()


class FakeGateway:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = 0

    def transcribe(self, file_path):
        self.calls += 1
        if self.fail:
            raise RuntimeError("provider exploded with internal detail")
        return "Cable C1 fibre 3 to cable C2 fibre 7"

    def extract_splice_data(self, text):
        return {"connections": [{
            "incomingCable": "C1", "incomingFiber": 3,
            "outgoingCable": "C2", "outgoingFiber": 7,
        }]}


@pytest.fixture()
def fake_gateway(monkeypatch):
    gateway = FakeGateway()
    monkeypatch.setattr(media_queue, "gateway_factory", lambda app: gateway)
    return gateway


def _stored_files(upload_dir, folder):
    path = upload_dir / folder
    return sorted(p.name for p in path.iterdir()) if path.exists() else []


def _photos(step_id):
    return (db.session.get(WorkflowExecutionStep, step_id).evidence or {}).get("photos", [])


# ═════════════════════════════════════════════════════════════════════════════
# Photo upload
# ═════════════════════════════════════════════════════════════════════════════


class TestPhotoUpload:
    def test_requires_auth(self, client):
        res = client.post(PHOTO_URL, data={}, content_type="multipart/form-data")
        assert res.status_code == 401

    def test_upload_attaches_to_step(self, upload, upload_dir, work_item, photo_step):
        res = upload(PHOTO_URL, "IMG_0001.jpg", JPEG_BYTES, "image/jpeg",
                     workItemId=work_item.id, stepId="photos")
        assert res.status_code == 200
        body = res.get_json()

        assert body["success"] is True
        assert body["stepIndex"] == 1
        assert body["originalFileName"] == "IMG_0001.jpg"
        assert body["size"] == len(JPEG_BYTES)
        assert body["fileName"].startswith("photo-")
        assert body["url"] == f"/api/v1/field-app/media/field-photos/{body['fileName']}"
        assert "duplicate" not in body
        assert _stored_files(upload_dir, "field-photos") == [body["fileName"]]

        (entry,) = _photos(photo_step.id)
        assert entry["id"] == body["photoId"]
        assert entry["data"].startswith("data:image/jpeg;base64,")
        assert entry["originalFileName"] == "IMG_0001.jpg"

        log = ActivityLog.query.filter_by(action_type="file_upload").one()
        assert log.details["action"] == "photo_uploaded"
        assert log.entity_id == str(work_item.id)

    def test_retry_is_idempotent(self, upload, upload_dir, work_item, photo_step):
        first = upload(PHOTO_URL, "IMG_0001.jpg", JPEG_BYTES, "image/jpeg",
                       workItemId=work_item.id, stepId="photos").get_json()
        second = upload(PHOTO_URL, "IMG_0001.jpg", JPEG_BYTES, "image/jpeg",
                        workItemId=work_item.id, stepId="photos").get_json()

        assert second["duplicate"] is True
        assert second["message"] == "Photo already exists"
        assert second["photoId"] == first["photoId"]
        assert second["fileName"] == first["fileName"]
        assert len(_photos(photo_step.id)) == 1
        # The re-sent bytes are not kept
        assert _stored_files(upload_dir, "field-photos") == [first["fileName"]]

        actions = [e.details["action"] for e in ActivityLog.query.order_by(ActivityLog.id)]
        assert actions == ["photo_uploaded", "photo_duplicate"]

    def test_same_name_different_size_is_new(self, upload, work_item, photo_step):
        upload(PHOTO_URL, "IMG_0001.jpg", JPEG_BYTES, "image/jpeg",
               workItemId=work_item.id, stepId="photos")
        res = upload(PHOTO_URL, "IMG_0001.jpg", JPEG_BYTES + b"x", "image/jpeg",
                     workItemId=work_item.id, stepId="photos")
        assert "duplicate" not in res.get_json()
        assert len(_photos(photo_step.id)) == 2

    def test_step_addressed_by_index(self, upload, work_item, execution):
        res = upload(PHOTO_URL, "lid.png", JPEG_BYTES, "image/png",
                     workItemId=work_item.id, stepId=2)
        assert res.get_json()["stepIndex"] == 2

    def test_no_step_stores_without_attaching(self, upload, upload_dir, work_item, photo_step):
        res = upload(PHOTO_URL, "IMG_0002.jpg", JPEG_BYTES, "image/jpeg", workItemId=work_item.id)
        body = res.get_json()
        assert res.status_code == 200
        assert "stepIndex" not in body
        assert _photos(photo_step.id) == []
        assert len(_stored_files(upload_dir, "field-photos")) == 1

    def test_missing_work_item_id(self, upload):
        res = upload(PHOTO_URL, "IMG_0001.jpg", JPEG_BYTES, "image/jpeg")
        assert res.status_code == 400
        assert res.get_json()["error"] == "workItemId is required"

    def test_missing_file(self, client, auth_headers, work_item):
        res = client.post(
            PHOTO_URL, data={"workItemId": str(work_item.id)},
            headers=auth_headers, content_type="multipart/form-data",
        )
        assert res.status_code == 400
        assert res.get_json()["error"] == "No file uploaded"


class TestPhotoRejection:
    def test_wrong_type_is_415(self, upload, upload_dir, work_item):
        res = upload(PHOTO_URL, "notes.txt", b"hello", "text/plain",
                     workItemId=work_item.id, stepId="photos")
        assert res.status_code == 415
        assert _stored_files(upload_dir, "field-photos") == []

    def test_photo_needs_extension_and_mime(self, upload, work_item):
        res = upload(PHOTO_URL, "IMG_0001.jpg", JPEG_BYTES, "application/octet-stream",
                     workItemId=work_item.id, stepId="photos")
        assert res.status_code == 415

    def test_oversize_is_413_and_file_removed(self, app, upload, upload_dir, work_item, photo_step, monkeypatch):
        monkeypatch.setitem(app.config, "PHOTO_MAX_BYTES", 16)
        res = upload(PHOTO_URL, "IMG_0001.jpg", JPEG_BYTES, "image/jpeg",
                     workItemId=work_item.id, stepId="photos")

        assert res.status_code == 413
        assert res.get_json()["details"] == {"size": len(JPEG_BYTES), "limit": 16}
        assert _stored_files(upload_dir, "field-photos") == []
        assert _photos(photo_step.id) == []

        failed = ActivityLog.query.filter_by(action_type="file_upload").one()
        assert failed.details["action"] == "file_upload_failed"

    def test_unknown_step_is_404_and_file_removed(self, upload, upload_dir, work_item, execution):
        res = upload(PHOTO_URL, "IMG_0001.jpg", JPEG_BYTES, "image/jpeg",
                     workItemId=work_item.id, stepId="no-such-step")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Step record not found"
        assert _stored_files(upload_dir, "field-photos") == []

    def test_work_item_without_execution_is_404(self, upload, upload_dir, organization, user, make_item):
        item = make_item(organization.id, assigned_to=user.id)
        res = upload(PHOTO_URL, "IMG_0001.jpg", JPEG_BYTES, "image/jpeg",
                     workItemId=item.id, stepId="photos")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Workflow execution not found"
        assert _stored_files(upload_dir, "field-photos") == []

    def test_other_organization_work_item_is_404(self, upload, other_organization, make_item):
        foreign = make_item(other_organization.id)
        res = upload(PHOTO_URL, "IMG_0001.jpg", JPEG_BYTES, "image/jpeg",
                     workItemId=foreign.id, stepId="photos")
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Photo deletion
# ═════════════════════════════════════════════════════════════════════════════


class TestDeletePhoto:
    @pytest.fixture()
    def two_photos(self, upload, work_item, photo_step):
        for name in ("IMG_A.jpg", "IMG_B.jpg"):
            upload(PHOTO_URL, name, JPEG_BYTES, "image/jpeg",
                   workItemId=work_item.id, stepId="photos")
        return photo_step

    def test_delete_by_index(self, client, auth_headers, work_item, two_photos):
        res = client.delete(DELETE_URL, json={
            "workItemId": work_item.id, "stepId": two_photos.id, "photoIndex": 0,
        }, headers=auth_headers)
        assert res.status_code == 200
        assert res.get_json() == {"success": True, "remainingPhotos": 1}

        (remaining,) = _photos(two_photos.id)
        assert remaining["originalFileName"] == "IMG_B.jpg"
        assert db.session.get(WorkflowExecutionStep, two_photos.id).evidence["photoConfig"] == {"minPhotos": 2}
        assert ActivityLog.query.filter_by(action_type="deletion").count() == 1

    @pytest.mark.parametrize("index", [2, -1])
    def test_index_out_of_range(self, client, auth_headers, work_item, two_photos, index):
        res = client.delete(DELETE_URL, json={
            "workItemId": work_item.id, "stepId": two_photos.id, "photoIndex": index,
        }, headers=auth_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "Invalid photo index"
        assert len(_photos(two_photos.id)) == 2

    def test_missing_fields(self, client, auth_headers, work_item):
        res = client.delete(DELETE_URL, json={"workItemId": work_item.id}, headers=auth_headers)
        assert res.status_code == 400
        assert res.get_json()["error"] == "workItemId, stepId, and photoIndex are required"

    def test_step_of_other_work_item(self, client, auth_headers, organization, make_item, two_photos):
        other = make_item(organization.id)
        res = client.delete(DELETE_URL, json={
            "workItemId": other.id, "stepId": two_photos.id, "photoIndex": 0,
        }, headers=auth_headers)
        assert res.status_code == 404

    def test_other_organization_cannot_delete(self, client, headers_for, other_organization,
                                              work_item, two_photos):
        outsider = User(organization_id=other_organization.id, email="x@south.example")
        db.session.add(outsider)
        db.session.commit()

        res = client.delete(DELETE_URL, json={
            "workItemId": work_item.id, "stepId": two_photos.id, "photoIndex": 0,
        }, headers=headers_for(outsider.id, other_organization.id))
        assert res.status_code == 404
        assert len(_photos(two_photos.id)) == 2


# ═════════════════════════════════════════════════════════════════════════════
# Media serving
# ═════════════════════════════════════════════════════════════════════════════


class TestMediaServing:
    def test_uploaded_file_is_served(self, client, auth_headers, upload, work_item, photo_step):
        body = upload(PHOTO_URL, "IMG_0001.jpg", JPEG_BYTES, "image/jpeg",
                      workItemId=work_item.id, stepId="photos").get_json()
        res = client.get(body["url"], headers=auth_headers)
        assert res.status_code == 200
        assert res.data == JPEG_BYTES

    def test_requires_auth(self, client):
        res = client.get("/api/v1/field-app/media/field-photos/photo-x.jpg")
        assert res.status_code == 401

    def test_unknown_folder(self, client, auth_headers, user):
        res = client.get("/api/v1/field-app/media/secrets/x.jpg", headers=auth_headers)
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Audio
# ═════════════════════════════════════════════════════════════════════════════


def _audio_step(execution_id):
    return WorkflowExecutionStep.query.filter_by(execution_id=execution_id, step_index=2).one()


class TestAudioUpload:
    def test_upload_creates_recording_and_processes(self, upload, work_item, execution, fake_gateway):
        res = upload(AUDIO_URL, "memo.m4a", AUDIO_BYTES, "audio/mp4",
                     workItemId=work_item.id, stepId="splice", duration="12.5")
        assert res.status_code == 200
        body = res.get_json()
        assert body["duration"] == 12.5
        assert body["stepIndex"] == 2

        recording = db.session.get(AudioRecording, body["audioId"])
        assert recording.processing_status == "completed"
        assert recording.processing_attempts == 1
        assert recording.transcription == "Cable C1 fibre 3 to cable C2 fibre 7"
        assert recording.extracted_data["connections"][0]["outgoingFiber"] == 7

        (entry,) = _audio_step(execution.id).evidence["audioRecordings"]
        assert entry["audioId"] == body["audioId"]
        assert entry["duration"] == 12.5

    def test_extension_alone_is_enough(self, upload, work_item, execution, fake_gateway):
        res = upload(AUDIO_URL, "memo.webm", AUDIO_BYTES, "application/octet-stream",
                     workItemId=work_item.id, stepId="splice")
        assert res.status_code == 200

    def test_wrong_type_is_415(self, upload, work_item, execution):
        res = upload(AUDIO_URL, "memo.exe", AUDIO_BYTES, "application/x-msdownload",
                     workItemId=work_item.id, stepId="splice")
        assert res.status_code == 415

    def test_oversize_is_413(self, app, upload, upload_dir, work_item, execution, monkeypatch):
        monkeypatch.setitem(app.config, "AUDIO_MAX_BYTES", 8)
        res = upload(AUDIO_URL, "memo.wav", AUDIO_BYTES, "audio/wav",
                     workItemId=work_item.id, stepId="splice")
        assert res.status_code == 413
        assert _stored_files(upload_dir, "field-audio") == []
        assert AudioRecording.query.count() == 0

    def test_duplicate_creates_no_second_recording(self, upload, work_item, execution, fake_gateway):
        first = upload(AUDIO_URL, "memo.m4a", AUDIO_BYTES, "audio/mp4",
                       workItemId=work_item.id, stepId="splice").get_json()
        second = upload(AUDIO_URL, "memo.m4a", AUDIO_BYTES, "audio/mp4",
                        workItemId=work_item.id, stepId="splice").get_json()

        assert second["duplicate"] is True
        assert second["audioId"] == first["audioId"]
        assert AudioRecording.query.count() == 1
        assert fake_gateway.calls == 1

    def test_without_step_still_records(self, upload, work_item, fake_gateway):
        body = upload(AUDIO_URL, "memo.mp3", AUDIO_BYTES, "audio/mpeg",
                      workItemId=work_item.id).get_json()
        recording = db.session.get(AudioRecording, body["audioId"])
        assert recording.step_id is None
        assert recording.processing_status == "completed"

    def test_processing_failure_is_recorded_not_raised(self, upload, work_item, execution, monkeypatch):
        gateway = FakeGateway(fail=True)
        monkeypatch.setattr(media_queue, "gateway_factory", lambda app: gateway)

        res = upload(AUDIO_URL, "memo.m4a", AUDIO_BYTES, "audio/mp4",
                     workItemId=work_item.id, stepId="splice")
        assert res.status_code == 200

        recording = db.session.get(AudioRecording, res.get_json()["audioId"])
        assert recording.processing_status == "failed"
        assert recording.processing_attempts == 2
        assert recording.processing_error == "Audio processing failed"
        assert gateway.calls == 2

    def test_unconfigured_provider_fails_cleanly(self, app, upload, work_item, execution, monkeypatch):
        monkeypatch.setitem(app.config, "TRANSCRIPTION_API_KEY", None)
        res = upload(AUDIO_URL, "memo.m4a", AUDIO_BYTES, "audio/mp4",
                     workItemId=work_item.id, stepId="splice")
        recording = db.session.get(AudioRecording, res.get_json()["audioId"])
        assert recording.processing_status == "failed"
        assert recording.processing_error == "Transcription API key is not configured"

    def test_provider_error_body_is_not_stored(self, client, auth_headers, upload, work_item, execution,
                                               monkeypatch):
        session = MagicMock()
        session.post.return_value = MagicMock(
            ok=False, status_code=500, text="Traceback ... db password=hunter2 at /srv/internal",
        )
        gateway = TranscriptionGateway("https://stt.example/v1", "key", session=session)
        monkeypatch.setattr(media_queue, "gateway_factory", lambda app: gateway)

        audio_id = upload(AUDIO_URL, "memo.m4a", AUDIO_BYTES, "audio/mp4",
                          workItemId=work_item.id, stepId="splice").get_json()["audioId"]
        res = client.get(f"/api/v1/field-app/audio-recordings/{audio_id}", headers=auth_headers)
        recording = res.get_json()["audioRecording"]

        assert recording["processingStatus"] == "failed"
        assert recording["processingError"] == "Transcription service unavailable"
        assert "hunter2" not in res.get_data(as_text=True)
        assert "/srv/internal" not in res.get_data(as_text=True)


class _IdleThread:
    """Stands in for the job thread; records construction, never runs."""

    created = []

    def __init__(self, target=None, args=(), daemon=None):
        _IdleThread.created.append(args)

    def start(self):
        pass


class TestBackgroundQueue:
    @pytest.fixture()
    def background(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "MEDIA_PROCESSING_INLINE", False)
        monkeypatch.setattr(media_processing, "_running_jobs", {})
        monkeypatch.setattr(media_processing.threading, "Thread", _IdleThread)
        monkeypatch.setattr(_IdleThread, "created", [])

    def test_one_job_per_recording(self, background):
        media_queue.submit("rec-1")
        media_queue.submit("rec-1")
        media_queue.submit("rec-2")

        assert [args[1] for args in _IdleThread.created] == ["rec-1", "rec-2"]
        assert media_queue.is_running("rec-1")

    def test_concurrent_submits_start_one_job(self, app, background):
        barrier = threading.Barrier(8)

        def submit():
            with app.app_context():
                barrier.wait()
                media_queue.submit("rec-1")

        callers = [_RealThread(target=submit) for _ in range(8)]
        for caller in callers:
            caller.start()
        for caller in callers:
            caller.join()

        assert len(_IdleThread.created) == 1


class TestAudioRecordings:
    @pytest.fixture()
    def failed_recording(self, upload, work_item, execution, monkeypatch):
        monkeypatch.setattr(media_queue, "gateway_factory", lambda app: FakeGateway(fail=True))
        body = upload(AUDIO_URL, "memo.m4a", AUDIO_BYTES, "audio/mp4",
                      workItemId=work_item.id, stepId="splice").get_json()
        return body["audioId"]

    def test_get(self, client, auth_headers, failed_recording):
        res = client.get(f"/api/v1/field-app/audio-recordings/{failed_recording}", headers=auth_headers)
        assert res.status_code == 200
        assert res.get_json()["audioRecording"]["processingStatus"] == "failed"

    def test_get_other_organization_is_404(self, client, headers_for, other_organization, failed_recording):
        res = client.get(
            f"/api/v1/field-app/audio-recordings/{failed_recording}",
            headers=headers_for(1, other_organization.id),
        )
        assert res.status_code == 404

    def test_reprocess(self, client, auth_headers, failed_recording, monkeypatch):
        monkeypatch.setattr(media_queue, "gateway_factory", lambda app: FakeGateway())
        res = client.post(
            f"/api/v1/field-app/audio-recordings/{failed_recording}/reprocess", headers=auth_headers,
        )
        assert res.status_code == 202

        recording = db.session.get(AudioRecording, failed_recording)
        assert recording.processing_status == "completed"
        assert recording.processing_attempts == 1
        assert recording.processing_error is None

    def test_manual_correction(self, client, auth_headers, failed_recording):
        res = client.patch(
            f"/api/v1/field-app/audio-recordings/{failed_recording}",
            json={"transcription": "corrected", "extractedData": {"connections": []}},
            headers=auth_headers,
        )
        assert res.status_code == 200
        body = res.get_json()["audioRecording"]
        assert body["transcription"] == "corrected"
        assert body["extractedData"] == {"connections": []}

    def test_manual_correction_validates_types(self, client, auth_headers, failed_recording):
        res = client.patch(
            f"/api/v1/field-app/audio-recordings/{failed_recording}",
            json={"transcription": 42},
            headers=auth_headers,
        )
        assert res.status_code == 400
