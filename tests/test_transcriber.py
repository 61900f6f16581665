"""Tests for the transcription queue, retry policy and HTTP backend."""

from __future__ import annotations

import threading
import unittest

import requests

from smart_transcriber.core.transcriber import (
    Transcriber,
    TranscriptionBackend,
    WhisperAPIBackend,
    WhisperOptions,
    is_retryable_error,
)
from smart_transcriber.models.settings import Settings
from smart_transcriber.models.speech_segment import TranscriptionResult
from smart_transcriber.utils.error_handling import TranscriptionError


class ScriptedBackend(TranscriptionBackend):
    """Returns or raises the scripted outcomes in order."""
    name = "scripted"

    def __init__(self, outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    def transcribe(self, audio, mime_type, options):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class BlockingBackend(TranscriptionBackend):
    """Blocks every request until released, tracking concurrency."""
    name = "blocking"

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def transcribe(self, audio, mime_type, options):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        self.release.wait(5)
        with self._lock:
            self.active -= 1
        return TranscriptionResult(text=audio.decode())


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None) -> None:
        self.response = response
        self.error = error
        self.requests = []

    def post(self, url, **kwargs):
        self.requests.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


class TestRetryPolicy(unittest.TestCase):
    """Tests for Transcriber.transcribe_with_retry."""

    def setUp(self) -> None:
        self.sleeps = []

    def _transcriber(self, backend) -> Transcriber:
        transcriber = Transcriber(backend, sleep=self.sleeps.append)
        self.addCleanup(transcriber.shutdown)
        return transcriber

    def test_retryable_messages(self) -> None:
        self.assertTrue(is_retryable_error(TranscriptionError("Network error: reset")))
        self.assertTrue(is_retryable_error(TranscriptionError("Request timeout")))
        self.assertTrue(is_retryable_error(TranscriptionError("OpenAI API error: 503 - busy")))
        self.assertTrue(is_retryable_error(TranscriptionError("OpenAI API error: 429 - slow down (rate limit)")))
        self.assertFalse(is_retryable_error(TranscriptionError("OpenAI API error: 400 - bad file")))

    def test_transient_errors_back_off(self) -> None:
        result = TranscriptionResult(text="hello")
        backend = ScriptedBackend([
            TranscriptionError("Network error"),
            TranscriptionError("OpenAI API error: 503 - unavailable"),
            result,
        ])
        transcriber = self._transcriber(backend)
        self.assertIs(transcriber.transcribe_with_retry(b"x", "audio/wav", WhisperOptions()), result)
        self.assertEqual(self.sleeps, [1.0, 2.0])
        self.assertEqual(backend.calls, 3)

    def test_gives_up_after_three_retries(self) -> None:
        backend = ScriptedBackend([TranscriptionError("Request timeout")] * 4)
        transcriber = self._transcriber(backend)
        with self.assertRaises(TranscriptionError):
            transcriber.transcribe_with_retry(b"x", "audio/wav", WhisperOptions())
        self.assertEqual(self.sleeps, [1.0, 2.0, 4.0])
        self.assertEqual(backend.calls, 4)

    def test_permanent_error_is_not_retried(self) -> None:
        backend = ScriptedBackend([TranscriptionError("OpenAI API error: 401 - bad key")])
        transcriber = self._transcriber(backend)
        with self.assertRaises(TranscriptionError):
            transcriber.transcribe_with_retry(b"x", "audio/wav", WhisperOptions())
        self.assertEqual(self.sleeps, [])

    def test_other_exceptions_are_wrapped(self) -> None:
        backend = ScriptedBackend([RuntimeError("boom")])
        transcriber = self._transcriber(backend)
        with self.assertRaises(TranscriptionError):
            transcriber.transcribe_with_retry(b"x", "audio/wav", WhisperOptions())


class TestTranscriberQueue(unittest.TestCase):
    """Tests for the sequential worker queue."""

    def test_requests_are_sequential_and_spaced(self) -> None:
        sleeps = []
        backend = BlockingBackend()
        backend.release.set()
        transcriber = Transcriber(backend, sleep=sleeps.append)

        futures = [transcriber.submit(f"seg{i}".encode()) for i in range(3)]
        texts = [f.result(timeout=5).text for f in futures]
        transcriber.shutdown(cancel_pending=False)

        self.assertEqual(texts, ["seg0", "seg1", "seg2"])
        self.assertEqual(backend.max_active, 1)
        self.assertEqual(sleeps, [0.2, 0.2, 0.2])

    def test_clear_queue_cancels_pending(self) -> None:
        backend = BlockingBackend()
        transcriber = Transcriber(backend, sleep=lambda _: None)
        self.addCleanup(transcriber.shutdown)

        first = transcriber.submit(b"first")
        self.assertTrue(backend.started.wait(5))
        pending = [transcriber.submit(b"second"), transcriber.submit(b"third")]
        self.assertEqual(transcriber.queue_length, 2)
        self.assertTrue(transcriber.processing)

        self.assertEqual(transcriber.clear_queue(), 2)
        self.assertEqual(transcriber.queue_length, 0)
        for future in pending:
            error = future.exception(timeout=1)
            self.assertIsInstance(error, TranscriptionError)
            self.assertIn("Request cancelled", str(error))

        backend.release.set()
        self.assertEqual(first.result(timeout=5).text, "first")

    def test_failed_request_resolves_future_with_error(self) -> None:
        backend = ScriptedBackend([TranscriptionError("OpenAI API error: 400 - bad")])
        transcriber = Transcriber(backend, sleep=lambda _: None)
        self.addCleanup(transcriber.shutdown)
        future = transcriber.submit(b"x")
        self.assertIsInstance(future.exception(timeout=5), TranscriptionError)


class TestWhisperAPIBackend(unittest.TestCase):
    """Tests for the HTTP backend with a fake session."""

    def test_posts_transcription_request(self) -> None:
        session = FakeSession(FakeResponse(payload={
            "text": " Hello there. ",
            "language": "english",
            "duration": 2.5,
            "segments": [{"start": 0.0, "end": 2.5, "text": " Hello there."}],
        }))
        backend = WhisperAPIBackend("sk-test", base_url="https://example.test/v1/", session=session)
        result = backend.transcribe(b"RIFF", "audio/wav", WhisperOptions(language="en"))

        url, kwargs = session.requests[0]
        self.assertEqual(url, "https://example.test/v1/audio/transcriptions")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk-test")
        self.assertEqual(kwargs["data"]["language"], "en")
        self.assertEqual(kwargs["data"]["model"], "whisper-1")
        self.assertEqual(kwargs["files"]["file"][0], "audio.wav")
        self.assertEqual(result.text, " Hello there. ")
        self.assertEqual(result.duration, 2.5)
        self.assertEqual(result.segments[0]["end"], 2.5)

    def test_translation_endpoint(self) -> None:
        session = FakeSession(FakeResponse(payload={"text": "hi"}))
        backend = WhisperAPIBackend("sk-test", session=session)
        backend.transcribe(b"RIFF", "audio/wav", WhisperOptions(language="fr", translate=True))
        url, kwargs = session.requests[0]
        self.assertTrue(url.endswith("/audio/translations"))
        self.assertNotIn("language", kwargs["data"])

    def test_text_response_format(self) -> None:
        session = FakeSession(FakeResponse(text="plain words\n"))
        backend = WhisperAPIBackend("sk-test", session=session)
        result = backend.transcribe(b"RIFF", "audio/wav", WhisperOptions(response_format="text"))
        self.assertEqual(result.text, "plain words")

    def test_rate_limit_error_is_retryable(self) -> None:
        session = FakeSession(FakeResponse(status_code=429, text="slow down"))
        backend = WhisperAPIBackend("sk-test", session=session)
        with self.assertRaises(TranscriptionError) as ctx:
            backend.transcribe(b"RIFF", "audio/wav", WhisperOptions())
        self.assertIn("OpenAI API error: 429 - slow down", str(ctx.exception))
        self.assertTrue(is_retryable_error(ctx.exception))

    def test_connection_error_maps_to_network_error(self) -> None:
        session = FakeSession(error=requests.exceptions.ConnectionError("refused"))
        backend = WhisperAPIBackend("sk-test", session=session)
        with self.assertRaises(TranscriptionError) as ctx:
            backend.transcribe(b"RIFF", "audio/wav", WhisperOptions())
        self.assertIn("Network error", str(ctx.exception))
        self.assertTrue(is_retryable_error(ctx.exception))

    def test_options_from_settings(self) -> None:
        settings = Settings()
        options = WhisperOptions.from_settings(settings)
        self.assertIsNone(options.language)
        settings.language = "de"
        settings.enable_translation = True
        options = WhisperOptions.from_settings(settings)
        self.assertEqual(options.language, "de")
        self.assertTrue(options.translate)


if __name__ == "__main__":
    unittest.main()
