"""API tests for job submission, polling, retry and download."""

import asyncio
import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from subtitler.database import init_db
from subtitler.errors import ExtractionFailed
from subtitler.main import create_app
from subtitler.routes.dependencies import (
    get_input_store,
    get_output_store,
    get_queue,
    get_repository,
)
from subtitler.services.audio_extraction import AudioExtractor
from subtitler.services.job_repository import JobRepository
from subtitler.services.job_state import JobStateMachine
from subtitler.services.pipeline import ConversionPipeline
from subtitler.services.storage import LocalInputStore, LocalOutputStore
from subtitler.services.transcription import TranscriptionService
from support import MISSING_BINARY, FakeProvider, make_session_factory, write_fake_ffmpeg

USER = {"X-User-Id": "user-1"}
OTHER_USER = {"X-User-Id": "user-2"}


class StubQueue:
    """Records admissions instead of running jobs."""

    def __init__(self):
        self.enqueued = []

    async def enqueue(self, job_id, source_location=None, owner_id=None, language=None):
        self.enqueued.append((job_id, source_location, owner_id, language))
        return True


class ApiTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.engine, session_factory = make_session_factory(self.root / "api.db")
        asyncio.run(init_db(self.engine))

        self.repository = JobRepository(session_factory)
        self.queue = StubQueue()
        self.inputs = LocalInputStore(str(self.root / "uploads"))
        self.outputs = LocalOutputStore(str(self.root / "srt"), "/subtitles")

        app = create_app()
        app.dependency_overrides[get_repository] = lambda: self.repository
        app.dependency_overrides[get_queue] = lambda: self.queue
        app.dependency_overrides[get_input_store] = lambda: self.inputs
        app.dependency_overrides[get_output_store] = lambda: self.outputs
        self.client = TestClient(app)

    def tearDown(self):
        asyncio.run(self.engine.dispose())
        self._tmp.cleanup()

    def seed_job(self, user_id="user-1", **fields):
        return asyncio.run(self.repository.create(
            user_id=user_id,
            file_name=fields.pop("file_name", "talk.mp4"),
            file_url=fields.pop("file_url", f"/api/v1/files/{user_id}/talk.mp4"),
            **fields,
        ))

    def finish_job(self, job_id, download_url=None, error=None):
        async def run():
            state = JobStateMachine(self.repository)
            await state.start(job_id)
            if error:
                await state.fail(job_id, error)
            else:
                await state.complete(job_id, download_url)

        asyncio.run(run())


class TestConvert(ApiTestCase):

    def test_requires_identity(self):
        response = self.client.post(
            "/api/v1/convert",
            files={"file": ("talk.mp4", b"media", "video/mp4")},
        )
        self.assertEqual(response.status_code, 401)

    def test_creates_pending_job_and_enqueues(self):
        response = self.client.post(
            "/api/v1/convert",
            files={"file": ("talk.mp4", b"media-bytes", "video/mp4")},
            data={"language": "de"},
            headers=USER,
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["status"], "pending")

        job_id, location, owner, language = self.queue.enqueued[0]
        self.assertEqual(job_id, body["jobId"])
        self.assertEqual((owner, language), ("user-1", "de"))
        self.assertEqual(self.inputs.resolve(location).read_bytes(), b"media-bytes")

        job = asyncio.run(self.repository.get(job_id))
        self.assertEqual(job.file_size, len(b"media-bytes"))
        self.assertEqual(job.file_type, "video/mp4")

    def test_rejects_non_media_upload(self):
        response = self.client.post(
            "/api/v1/convert",
            files={"file": ("notes.txt", b"text", "text/plain")},
            headers=USER,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.queue.enqueued, [])

    def test_rejects_empty_upload(self):
        response = self.client.post(
            "/api/v1/convert",
            files={"file": ("empty.mp3", b"", "audio/mpeg")},
            headers=USER,
        )
        self.assertEqual(response.status_code, 400)


class TestJobs(ApiTestCase):

    def test_list_shows_only_own_jobs(self):
        mine = self.seed_job()
        self.seed_job(user_id="user-2")

        response = self.client.get("/api/v1/jobs", headers=USER)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total"], 1)
        self.assertEqual(body["jobs"][0]["id"], mine.id)
        self.assertEqual(body["jobs"][0]["fileName"], "talk.mp4")
        self.assertIsNone(body["jobs"][0]["downloadUrl"])

    def test_get_job(self):
        job = self.seed_job()

        response = self.client.get(f"/api/v1/jobs/{job.id}", headers=USER)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "pending")
        self.assertEqual(response.json()["progress"], 0)
        self.assertIn("eta", response.json())
        self.assertIsNone(response.json()["eta"])

    def test_get_job_of_other_user_is_forbidden(self):
        job = self.seed_job()
        response = self.client.get(f"/api/v1/jobs/{job.id}", headers=OTHER_USER)
        self.assertEqual(response.status_code, 403)

    def test_get_missing_job(self):
        response = self.client.get("/api/v1/jobs/nope", headers=USER)
        self.assertEqual(response.status_code, 404)

    def test_delete_job(self):
        job = self.seed_job()

        response = self.client.delete(f"/api/v1/jobs/{job.id}", headers=USER)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(f"/api/v1/jobs/{job.id}", headers=USER).status_code, 404)

    def test_retry_requires_failed_job(self):
        job = self.seed_job()
        response = self.client.post(f"/api/v1/jobs/{job.id}/retry", headers=USER)
        self.assertEqual(response.status_code, 409)

    def test_retry_interrupted_job(self):
        location = asyncio.run(self.inputs.save(b"media", "talk.mp4", "user-1"))
        job = self.seed_job(file_url=location)
        self.finish_job(job.id, error="Processing was interrupted by a service restart")

        response = self.client.post(f"/api/v1/jobs/{job.id}/retry", headers=USER)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "retrying")
        self.assertIsNone(response.json()["error"])
        self.assertEqual(self.queue.enqueued[0][0], job.id)

    def test_retry_refused_once_upload_is_gone(self):
        location = asyncio.run(self.inputs.save(b"media", "talk.mp4", "user-1"))
        job = self.seed_job(file_url=location)
        pipeline = ConversionPipeline(
            repository=self.repository,
            extractor=AudioExtractor(str(write_fake_ffmpeg(self.root, exit_code=1, stderr="corrupt")), MISSING_BINARY),
            transcriber=TranscriptionService(FakeProvider("primary"), FakeProvider("fallback"), default_language="en"),
            inputs=self.inputs,
            outputs=self.outputs,
            temp_dir=str(self.root / "temp"),
        )
        with self.assertRaises(ExtractionFailed):
            asyncio.run(pipeline.run(job.id, location, "user-1", "en"))

        response = self.client.post(f"/api/v1/jobs/{job.id}/retry", headers=USER)

        self.assertEqual(response.status_code, 409)
        self.assertIn("no longer available", response.json()["detail"])
        self.assertEqual(asyncio.run(self.repository.get(job.id)).status, "failed")
        self.assertEqual(self.queue.enqueued, [])


class TestDownload(ApiTestCase):

    def test_not_ready(self):
        job = self.seed_job()
        response = self.client.get(f"/api/v1/download/{job.id}", headers=USER)
        self.assertEqual(response.status_code, 409)

    def test_download_completed_subtitles(self):
        job = self.seed_job()
        srt = b"1\n00:00:00,000 --> 00:00:01,000\nHello\n"
        url = asyncio.run(self.outputs.put(srt, f"{job.id}/talk.srt", "application/x-subrip"))
        self.finish_job(job.id, download_url=url)

        response = self.client.get(f"/api/v1/download/{job.id}", headers=USER)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, srt)
        self.assertIn('filename="talk.srt"', response.headers["content-disposition"])

    def test_download_of_other_user_is_forbidden(self):
        job = self.seed_job()
        response = self.client.get(f"/api/v1/download/{job.id}", headers=OTHER_USER)
        self.assertEqual(response.status_code, 403)


class TestHealth(ApiTestCase):

    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")


if __name__ == "__main__":
    unittest.main()
