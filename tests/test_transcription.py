"""Tests for providers and the provider fallback policy."""

import tempfile
import unittest
from pathlib import Path

import httpx

from subtitler.errors import ProviderError, TranscriptionFailed
from subtitler.services.providers import DeepgramProvider, WhisperProvider
from subtitler.services.transcription import (
    ProviderPolicy,
    TranscriptionService,
    choose_policy,
)
from support import FakeProvider, sample_cues


class TestChoosePolicy(unittest.TestCase):

    def test_default_language_uses_primary(self):
        self.assertEqual(choose_policy("en", "en"), ProviderPolicy.USE_PRIMARY)
        self.assertEqual(choose_policy("EN", "en"), ProviderPolicy.USE_PRIMARY)

    def test_missing_language_counts_as_default(self):
        self.assertEqual(choose_policy(None, "en"), ProviderPolicy.USE_PRIMARY)
        self.assertEqual(choose_policy("", "en"), ProviderPolicy.USE_PRIMARY)

    def test_forced_primary(self):
        self.assertEqual(choose_policy("de", "en", force_primary=True), ProviderPolicy.USE_PRIMARY)

    def test_other_language_falls_back(self):
        self.assertEqual(choose_policy("de", "en"), ProviderPolicy.USE_FALLBACK_THEN_PRIMARY)


class TestTranscriptionService(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.audio = Path("/tmp/audio.wav")

    async def test_default_language_never_contacts_fallback(self):
        primary = FakeProvider("primary", cues=sample_cues("hi"))
        fallback = FakeProvider("fallback", cues=sample_cues("nope"))
        service = TranscriptionService(primary, fallback, default_language="en")

        cues = await service.transcribe(self.audio, "en")

        self.assertEqual([c.text for c in cues], ["hi"])
        self.assertEqual(len(primary.calls), 1)
        self.assertEqual(fallback.calls, [])

    async def test_primary_failure_on_default_language_does_not_fall_back(self):
        primary = FakeProvider("primary", error="boom")
        fallback = FakeProvider("fallback", cues=sample_cues("nope"))
        service = TranscriptionService(primary, fallback, default_language="en")

        with self.assertRaises(TranscriptionFailed) as ctx:
            await service.transcribe(self.audio, "en")

        self.assertEqual(ctx.exception.attempts, ["primary"])
        self.assertEqual(fallback.calls, [])

    async def test_other_language_prefers_fallback_provider(self):
        primary = FakeProvider("primary", cues=sample_cues("primary"))
        fallback = FakeProvider("fallback", cues=sample_cues("hallo"))
        service = TranscriptionService(primary, fallback, default_language="en")

        cues = await service.transcribe(self.audio, "de")

        self.assertEqual([c.text for c in cues], ["hallo"])
        self.assertEqual(fallback.calls, [(self.audio, "de")])
        self.assertEqual(primary.calls, [])

    async def test_fallback_failure_retries_on_primary(self):
        primary = FakeProvider("primary", cues=sample_cues("eins", "zwei"))
        fallback = FakeProvider("fallback", error="429 too many requests")
        service = TranscriptionService(primary, fallback, default_language="en")

        cues = await service.transcribe(self.audio, "de")

        self.assertEqual([c.text for c in cues], ["eins", "zwei"])
        self.assertEqual(primary.calls, [(self.audio, "de")])

    async def test_both_failing_keeps_last_cause(self):
        primary = FakeProvider("primary", error="primary down")
        fallback = FakeProvider("fallback", error="fallback down")
        service = TranscriptionService(primary, fallback, default_language="en")

        with self.assertRaises(TranscriptionFailed) as ctx:
            await service.transcribe(self.audio, "fr")

        self.assertEqual(ctx.exception.attempts, ["fallback", "primary"])
        self.assertEqual(ctx.exception.cause.provider, "primary")
        self.assertIn("primary down", ctx.exception.message)

    async def test_exhaustion_chains_the_last_provider_error(self):
        primary = FakeProvider("primary", error="primary down")
        fallback = FakeProvider("fallback", error="fallback down")
        service = TranscriptionService(primary, fallback, default_language="en")

        with self.assertRaises(TranscriptionFailed) as ctx:
            await service.transcribe(self.audio, "en")

        self.assertIsInstance(ctx.exception.__cause__, ProviderError)
        self.assertIs(ctx.exception.__cause__, ctx.exception.cause)
        self.assertEqual(ctx.exception.attempts, ["primary"])
        self.assertEqual(fallback.calls, [])

    async def test_service_level_force_primary(self):
        primary = FakeProvider("primary", cues=sample_cues("x"))
        fallback = FakeProvider("fallback", cues=sample_cues("y"))
        service = TranscriptionService(primary, fallback, default_language="en", force_primary=True)

        self.assertEqual(service.plan("de"), [primary])
        self.assertEqual(service.plan("de", force_primary=False), [fallback, primary])


class ProviderTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.audio = Path(self._tmp.name) / "audio.wav"
        self.audio.write_bytes(b"RIFF....WAVE")
        self.requests = []

    def tearDown(self):
        self._tmp.cleanup()

    def transport(self, status_code: int, body):
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if isinstance(body, (dict, list)):
                return httpx.Response(status_code, json=body)
            return httpx.Response(status_code, text=body)

        return httpx.MockTransport(handler)


class TestWhisperProvider(ProviderTestCase):

    async def test_segments_become_cues(self):
        body = {
            "language": "english",
            "text": "Hello there. Bye.",
            "segments": [
                {"start": 0.0, "end": 1.5, "text": " Hello there."},
                {"start": 1.5, "end": 2.0, "text": " Bye."},
            ],
        }
        provider = WhisperProvider("sk-test", "https://api.example.com/v1", "whisper-1",
                                   transport=self.transport(200, body))

        cues = await provider.transcribe(self.audio, "en")

        self.assertEqual([(c.index, c.text) for c in cues], [(1, "Hello there."), (2, "Bye.")])
        request = self.requests[0]
        self.assertEqual(str(request.url), "https://api.example.com/v1/audio/transcriptions")
        self.assertEqual(request.headers["authorization"], "Bearer sk-test")
        self.assertIn(b"verbose_json", request.content)

    async def test_http_error_is_provider_error(self):
        provider = WhisperProvider("sk-test", "https://api.example.com/v1", "whisper-1",
                                   transport=self.transport(401, "invalid api key"))

        with self.assertRaises(ProviderError) as ctx:
            await provider.transcribe(self.audio, "en")

        self.assertEqual(ctx.exception.provider, "whisper")
        self.assertIn("401", ctx.exception.message)

    async def test_missing_segments_is_provider_error(self):
        provider = WhisperProvider("sk-test", "https://api.example.com/v1", "whisper-1",
                                   transport=self.transport(200, {"text": "no segments"}))

        with self.assertRaises(ProviderError):
            await provider.transcribe(self.audio, "en")

    async def test_missing_key_fails_without_request(self):
        provider = WhisperProvider("", "https://api.example.com/v1", "whisper-1",
                                   transport=self.transport(200, {}))

        with self.assertRaises(ProviderError):
            await provider.transcribe(self.audio, "en")
        self.assertEqual(self.requests, [])


class TestDeepgramProvider(ProviderTestCase):

    async def test_paragraph_sentences_become_cues(self):
        body = {
            "results": {
                "channels": [{
                    "alternatives": [{
                        "paragraphs": {
                            "paragraphs": [
                                {"sentences": [
                                    {"start": 0.1, "end": 1.0, "text": "Hola."},
                                    {"start": 1.2, "end": 2.0, "text": "Que tal?"},
                                ]},
                                {"sentences": [{"start": 2.5, "end": 3.0, "text": "Adios."}]},
                            ]
                        }
                    }]
                }]
            }
        }
        provider = DeepgramProvider("dg-test", "https://api.deepgram.example/v1", "whisper",
                                    transport=self.transport(200, body))

        cues = await provider.transcribe(self.audio, "es")

        self.assertEqual([c.index for c in cues], [1, 2, 3])
        self.assertEqual(cues[2].text, "Adios.")
        request = self.requests[0]
        self.assertEqual(request.url.params["language"], "es")
        self.assertEqual(request.url.params["paragraphs"], "true")
        self.assertEqual(request.headers["authorization"], "Token dg-test")
        self.assertEqual(request.content, b"RIFF....WAVE")

    async def test_malformed_transcript_is_provider_error(self):
        provider = DeepgramProvider("dg-test", "https://api.deepgram.example/v1", "whisper",
                                    transport=self.transport(200, {"results": {"channels": [{}]}}))

        with self.assertRaises(ProviderError) as ctx:
            await provider.transcribe(self.audio, "es")
        self.assertEqual(ctx.exception.provider, "deepgram")

    async def test_invalid_json_is_provider_error(self):
        provider = DeepgramProvider("dg-test", "https://api.deepgram.example/v1", "whisper",
                                    transport=self.transport(200, "<html>gateway</html>"))

        with self.assertRaises(ProviderError):
            await provider.transcribe(self.audio, "es")


if __name__ == "__main__":
    unittest.main()
