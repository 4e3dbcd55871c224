"""
Tests for the HTTP API, run against in-memory storage, a scripted yt-dlp
and a real SQLite database.
"""

import unittest

from fastapi.testclient import TestClient

from bickqr.core.errors import ProcessingError, ProcessingErrorType
from bickqr.core.status import BickStatus
from bickqr.db import BickRepository
from bickqr.db.models import AssetType, Bick, QueueJobState
from bickqr.jobs.queue import JobQueue
from bickqr.main import create_app
from bickqr.workers.acquisition import SourceAcquisition
from bickqr.workers.runner import CommandFailed
from tests.fakes import FakeRunner, FakeStorage, TempDatabase
from tests.test_acquisition import ytdlp

SESSION = {
    "title": "Bruh moment",
    "filename": "bruh.mp3",
    "contentType": "audio/mpeg",
    "durationMs": 1500,
}


def database_down(*args, **kwargs):
    raise ProcessingError(ProcessingErrorType.DATABASE_ERROR, "connection refused")


class ApiTestCase(unittest.TestCase):

    def setUp(self):
        self.db = TempDatabase()
        self.repo = BickRepository(self.db.session_factory)
        self.queue = JobQueue(self.db.session_factory)
        self.storage = FakeStorage()
        self.runner = FakeRunner(ytdlp())

    def tearDown(self):
        self.db.close()

    def client(self):
        app = create_app(
            repository=self.repo,
            queue=self.queue,
            storage=self.storage,
            acquisition=SourceAcquisition(runner=self.runner, ytdlp_bin="yt-dlp"),
            engine=self.db.engine,
        )
        return TestClient(app)

    def post(self, path, **kwargs):
        with self.client() as client:
            return client.post(path, **kwargs)

    def assertError(self, response, status, code):
        self.assertEqual(response.status_code, status, response.text)
        body = response.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["code"], code)
        return body

    def new_bick(self, status=None):
        bick = self.repo.create_bick(slug="bruh-abc123", title="Bruh", original_filename="bruh.wav")
        if status is not None:
            self.repo.update_bick_status(bick.id, status)
        return bick


class TestHealth(ApiTestCase):

    def test_health(self):
        with self.client() as client:
            response = client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})


class TestExtract(ApiTestCase):

    def test_success(self):
        response = self.post("/extract", json={"url": "https://youtu.be/abc"})

        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertTrue(body["audioUrl"].startswith("https://cdn.test/extracted/"))
        self.assertTrue(body["audioUrl"].endswith(".mp3"))
        self.assertEqual(body["durationMs"], 4200)
        self.assertEqual(body["sourceTitle"], "Funny clip")
        self.assertEqual(body["thumbnailUrl"], "https://img.test/t.jpg")
        self.assertEqual(len(self.storage.uploads), 1)

    def test_malformed_json(self):
        response = self.post(
            "/extract", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        self.assertError(response, 400, "INVALID_URL")

    def test_missing_url(self):
        self.assertError(self.post("/extract", json={}), 400, "INVALID_URL")
        self.assertError(self.post("/extract", json=["x"]), 400, "INVALID_URL")

    def test_unsupported_platform(self):
        response = self.post("/extract", json={"url": "https://vimeo.com/1"})
        body = self.assertError(response, 400, "UNSUPPORTED_PLATFORM")
        self.assertIn("TikTok", body["error"])

    def test_unavailable(self):
        self.runner = FakeRunner(
            ytdlp(probe_error=CommandFailed(["yt-dlp"], 1, "ERROR: Private video"))
        )
        self.assertError(
            self.post("/extract", json={"url": "https://youtu.be/abc"}), 404, "VIDEO_UNAVAILABLE"
        )

    def test_storage_failure_is_500(self):
        self.storage.fail_upload = RuntimeError("r2 down")
        self.assertError(
            self.post("/extract", json={"url": "https://youtu.be/abc"}), 500, "EXTRACTION_FAILED"
        )


class TestUploadSession(ApiTestCase):

    def test_creates_bick_and_presigned_url(self):
        response = self.post("/api/bicks/upload-session", json=SESSION)

        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        bick_id = body["bickId"]
        self.assertEqual(body["storageKey"], f"uploads/{bick_id}/original.mp3")
        self.assertIn("X-Amz-Signature", body["uploadUrl"])
        self.assertIn("expiresAt", body)

        bick = self.repo.get_bick(bick_id)
        self.assertEqual(bick.status, BickStatus.PROCESSING)
        self.assertEqual(bick.title, "Bruh moment")
        self.assertTrue(bick.slug.startswith("bruh-moment-"))
        self.assertEqual(bick.original_filename, "bruh.mp3")

    def test_unknown_extension_falls_back_to_mp3(self):
        response = self.post(
            "/api/bicks/upload-session", json=dict(SESSION, filename="clip.weird")
        )
        self.assertTrue(response.json()["storageKey"].endswith("/original.mp3"))

    def test_validation_errors(self):
        cases = [
            dict(SESSION, title=""),
            dict(SESSION, title="x" * 101),
            dict(SESSION, description="d" * 501),
            dict(SESSION, contentType="application/pdf"),
            dict(SESSION, durationMs=0),
            dict(SESSION, filename="   "),
            {k: v for k, v in SESSION.items() if k != "filename"},
        ]
        for payload in cases:
            response = self.post("/api/bicks/upload-session", json=payload)
            body = self.assertError(response, 400, "VALIDATION_ERROR")
            self.assertTrue(body["details"])

    def test_presign_failure_removes_bick(self):
        self.storage.fail_presign = True
        response = self.post("/api/bicks/upload-session", json=SESSION)

        self.assertError(response, 500, "R2_ERROR")
        db = self.db.session_factory()
        try:
            self.assertEqual(db.query(Bick).count(), 0)
        finally:
            db.close()


    def test_presign_failure_survives_cleanup_error(self):
        self.storage.fail_presign = True
        self.repo.delete_bick = database_down

        response = self.post("/api/bicks/upload-session", json=SESSION)
        self.assertError(response, 500, "R2_ERROR")

    def test_supported_source_url_is_stored(self):
        url = "https://www.youtube.com/watch?v=abc"
        response = self.post("/api/bicks/upload-session", json=dict(SESSION, sourceUrl=url))

        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(self.repo.get_bick(response.json()["bickId"]).source_url, url)

    def test_blank_source_url_is_ignored(self):
        response = self.post("/api/bicks/upload-session", json=dict(SESSION, sourceUrl="  "))

        self.assertEqual(response.status_code, 200, response.text)
        self.assertIsNone(self.repo.get_bick(response.json()["bickId"]).source_url)

    def test_unsupported_source_url_is_rejected(self):
        response = self.post(
            "/api/bicks/upload-session", json=dict(SESSION, sourceUrl="https://vimeo.com/1")
        )

        body = self.assertError(response, 400, "UNSUPPORTED_PLATFORM")
        self.assertIn("YouTube", body["error"])
        db = self.db.session_factory()
        try:
            self.assertEqual(db.query(Bick).count(), 0)
        finally:
            db.close()


class TestComplete(ApiTestCase):

    def complete(self, bick_id, **overrides):
        body = {"storageKey": f"uploads/{bick_id}/original.wav", "sizeBytes": 2048}
        body.update(overrides)
        return self.post(f"/api/bicks/{bick_id}/complete", json=body)

    def test_queues_processing(self):
        bick = self.new_bick()
        response = self.complete(bick.id)

        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["jobId"], f"bick-{bick.id}")
        self.assertEqual(response.json()["bickId"], bick.id)

        row = self.queue.get(f"bick-{bick.id}")
        self.assertEqual(row.state, QueueJobState.WAITING)
        self.assertEqual(row.payload["storageKey"], f"uploads/{bick.id}/original.wav")
        self.assertEqual(row.payload["originalFilename"], "bruh.wav")
        self.assertIn(AssetType.ORIGINAL, self.repo.list_asset_types(bick.id))

    def test_twice_is_one_job(self):
        bick = self.new_bick()
        self.complete(bick.id)
        self.complete(bick.id)
        self.assertEqual(self.queue.counts()["waiting"], 1)

    def test_not_found(self):
        self.assertError(self.complete("missing"), 404, "NOT_FOUND")

    def test_already_live(self):
        bick = self.new_bick(BickStatus.LIVE)
        self.assertError(self.complete(bick.id), 409, "ALREADY_COMPLETED")

    def test_size_limits(self):
        bick = self.new_bick()
        self.assertError(self.complete(bick.id, sizeBytes=0), 400, "VALIDATION_ERROR")
        self.assertError(
            self.complete(bick.id, sizeBytes=10 * 1024 * 1024 + 1), 400, "VALIDATION_ERROR"
        )
        self.assertEqual(self.complete(bick.id, sizeBytes=10 * 1024 * 1024).status_code, 200)

    def test_foreign_storage_key(self):
        bick = self.new_bick()
        response = self.complete(bick.id, storageKey="uploads/someone-else/original.mp3")
        self.assertError(response, 400, "VALIDATION_ERROR")
        self.assertIsNone(self.queue.get(f"bick-{bick.id}"))

    def test_asset_insert_failure_still_queues(self):
        bick = self.new_bick()

        def broken_insert(bick_id, asset):
            raise ProcessingError(ProcessingErrorType.DATABASE_ERROR, "disk full")

        self.repo.insert_asset = broken_insert
        self.assertEqual(self.complete(bick.id).status_code, 200)
        self.assertIsNotNone(self.queue.get(f"bick-{bick.id}"))

    def test_database_down(self):
        bick = self.new_bick()
        self.repo.get_bick = database_down

        self.assertError(self.complete(bick.id), 500, "DATABASE_ERROR")
        self.assertIsNone(self.queue.get(f"bick-{bick.id}"))


class TestRetry(ApiTestCase):

    def test_retry_failed_bick(self):
        bick = self.new_bick(BickStatus.FAILED)
        response = self.post(f"/api/bicks/{bick.id}/retry")

        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["jobId"], f"bick-{bick.id}")
        self.assertEqual(self.repo.get_bick(bick.id).status, BickStatus.PROCESSING)
        row = self.queue.get(f"bick-{bick.id}")
        self.assertEqual(row.payload["storageKey"], f"uploads/{bick.id}/original.wav")

    def test_retry_requires_failed(self):
        bick = self.new_bick()
        self.assertError(self.post(f"/api/bicks/{bick.id}/retry"), 409, "NOT_FAILED")

    def test_retry_missing(self):
        self.assertError(self.post("/api/bicks/missing/retry"), 404, "NOT_FOUND")

    def test_retry_database_down(self):
        bick = self.new_bick(BickStatus.FAILED)
        self.repo.get_bick = database_down

        self.assertError(self.post(f"/api/bicks/{bick.id}/retry"), 500, "DATABASE_ERROR")
        self.assertIsNone(self.queue.get(f"bick-{bick.id}"))


if __name__ == "__main__":
    unittest.main()
