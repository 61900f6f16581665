"""
Transcription functionality for the smart transcriber.
Sends audio segments to a Whisper backend, one request at a time, with retries
on transient failures.
"""

import io
import time
import queue
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
import typing as t

import requests

from smart_transcriber.models.speech_segment import TranscriptionResult
from smart_transcriber.utils.error_handling import TranscriptionError

logger = logging.getLogger(__name__)

# Substrings of error messages that are worth retrying
TRANSIENT_ERROR_MARKERS = ("network", "timeout", "502", "503", "504", "rate limit")

MIME_EXTENSIONS = {
    "audio/wav": "wav",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mp4": "mp4",
    "audio/mpeg": "mp3",
}


@dataclass
class WhisperOptions:
    """Per-request transcription options."""
    model: str = "whisper-1"
    language: t.Optional[str] = None  # None lets the model detect it
    translate: bool = False
    response_format: str = "verbose_json"
    temperature: float = 0.0
    prompt: t.Optional[str] = None

    @classmethod
    def from_settings(cls, settings):
        language = settings.language if settings.language != "auto" else None
        return cls(
            model=settings.whisper_model,
            language=language,
            translate=settings.enable_translation,
        )


def is_retryable_error(error: Exception) -> bool:
    """True if the error message names a transient condition."""
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_ERROR_MARKERS)


class TranscriptionBackend:
    """Interface implemented by every transcription backend."""
    name = "base"

    def transcribe(self, audio: bytes, mime_type: str, options: WhisperOptions) -> TranscriptionResult:
        """
        Transcribe one encoded audio segment.

        Raises:
            TranscriptionError: If the backend cannot produce a result
        """
        raise NotImplementedError


class WhisperAPIBackend(TranscriptionBackend):
    """OpenAI-compatible ``/audio/transcriptions`` endpoint over HTTP."""
    name = "openai"

    def __init__(self, api_key, base_url="https://api.openai.com/v1", timeout=60, session=None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _endpoint(self, options: WhisperOptions):
        path = "audio/translations" if options.translate else "audio/transcriptions"
        return f"{self.base_url}/{path}"

    def _form_data(self, options: WhisperOptions):
        data = {
            "model": options.model,
            "response_format": options.response_format,
            "temperature": str(options.temperature),
        }
        # The translation endpoint always targets English and takes no language
        if options.language and not options.translate:
            data["language"] = options.language
        if options.prompt:
            data["prompt"] = options.prompt
        return data

    def transcribe(self, audio: bytes, mime_type: str, options: WhisperOptions) -> TranscriptionResult:
        extension = MIME_EXTENSIONS.get(mime_type.split(";")[0], "wav")
        files = {"file": (f"audio.{extension}", audio, mime_type)}

        try:
            response = self.session.post(
                self._endpoint(options),
                headers={"Authorization": f"Bearer {self.api_key}"},
                data=self._form_data(options),
                files=files,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise TranscriptionError(f"Request timeout: {e}") from e
        except requests.exceptions.ConnectionError as e:
            raise TranscriptionError(f"Network error: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TranscriptionError(f"Request failed: {e}") from e

        if not response.ok:
            message = f"OpenAI API error: {response.status_code} - {response.text}"
            if response.status_code == 429:
                message += " (rate limit)"
            raise TranscriptionError(message)

        if options.response_format not in ("json", "verbose_json"):
            return TranscriptionResult(text=response.text.strip())

        try:
            payload = response.json()
        except ValueError as e:
            raise TranscriptionError(f"Malformed response from transcription service: {e}") from e

        return TranscriptionResult(
            text=payload.get("text", ""),
            language=payload.get("language"),
            duration=payload.get("duration"),
            segments=[
                {"start": s.get("start"), "end": s.get("end"), "text": s.get("text", "")}
                for s in payload.get("segments") or []
            ],
        )


class LocalWhisperBackend(TranscriptionBackend):
    """Runs Whisper locally with faster-whisper."""
    name = "local"

    def __init__(self, model_size="small", device="cpu"):
        self.logger = logging.getLogger(__name__)
        self.model_size = model_size
        self.device = device
        self.stt_model = None
        self._load_lock = threading.Lock()

    def load_model(self):
        """Load the STT model using faster_whisper."""
        self.logger.info(f"Loading STT model...{self.model_size} on {self.device}")
        try:
            from faster_whisper import WhisperModel
        except ImportError as e:
            raise TranscriptionError("faster-whisper is not installed: pip install faster-whisper") from e

        # Better precision on GPU
        compute_type = "float16" if self.device == "cuda" else "int8"
        try:
            self.stt_model = WhisperModel(
                model_size_or_path=self.model_size,
                device=self.device,
                compute_type=compute_type,
            )
        except Exception as e:
            raise TranscriptionError(f"Failed to load model: {e}") from e
        self.logger.info(f"Model loaded successfully on {self.device}")
        return self.stt_model

    def transcribe(self, audio: bytes, mime_type: str, options: WhisperOptions) -> TranscriptionResult:
        with self._load_lock:
            if self.stt_model is None:
                self.load_model()

        try:
            segments, info = self.stt_model.transcribe(
                io.BytesIO(audio),
                beam_size=5,
                language=options.language,
                task="translate" if options.translate else "transcribe",
                temperature=options.temperature,
                initial_prompt=options.prompt,
            )
            segments = list(segments)
        except Exception as e:
            raise TranscriptionError(f"Local transcription failed: {e}") from e

        self.logger.info(f"Detected language: '{info.language}' with probability {info.language_probability:.2f}")
        return TranscriptionResult(
            text=" ".join(s.text.strip() for s in segments),
            language=info.language,
            duration=info.duration,
            segments=[{"start": s.start, "end": s.end, "text": s.text} for s in segments],
        )


def create_backend(settings) -> TranscriptionBackend:
    """Build the backend selected in settings."""
    if settings.backend == "local":
        return LocalWhisperBackend(settings.local_model_size, settings.device)
    return WhisperAPIBackend(
        settings.openai_api_key,
        base_url=settings.api_base_url,
        timeout=settings.request_timeout,
    )


@dataclass
class _Request:
    future: Future
    audio: bytes
    mime_type: str
    options: WhisperOptions


class Transcriber:
    """Sequential transcription queue in front of a backend."""

    def __init__(self, backend: TranscriptionBackend, max_retries=3, retry_delay=1.0,
                 request_spacing=0.2, sleep: t.Callable[[float], None] = time.sleep):
        """
        Args:
            backend: Backend that performs each request
            max_retries: Retries after the first attempt for transient errors
            retry_delay: Base delay in seconds, doubled for every retry
            request_spacing: Pause in seconds after each request
            sleep: Sleep function, replaceable in tests
        """
        self.logger = logging.getLogger(__name__)
        self.backend = backend
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.request_spacing = request_spacing
        self.sleep = sleep
        self._queue: "queue.Queue[t.Optional[_Request]]" = queue.Queue()
        self._processing = threading.Event()
        self._worker = threading.Thread(target=self._process_queue, name="Transcriber", daemon=True)
        self._worker.start()

    @property
    def queue_length(self):
        return self._queue.qsize()

    @property
    def processing(self):
        return self._processing.is_set()

    def transcribe_with_retry(self, audio: bytes, mime_type: str, options: WhisperOptions) -> TranscriptionResult:
        """
        Call the backend, retrying transient failures with exponential backoff.

        Raises:
            TranscriptionError: The last error, once retries are exhausted or
                the error is not transient
        """
        attempt = 0
        while True:
            try:
                return self.backend.transcribe(audio, mime_type, options)
            except Exception as e:
                if attempt >= self.max_retries or not is_retryable_error(e):
                    if isinstance(e, TranscriptionError):
                        raise
                    raise TranscriptionError(str(e)) from e
                delay = self.retry_delay * (2 ** attempt)
                attempt += 1
                self.logger.warning(f"Transcription attempt {attempt} failed ({e}), retrying in {delay:.1f}s")
                self.sleep(delay)

    def submit(self, audio: bytes, mime_type="audio/wav", options: t.Optional[WhisperOptions] = None) -> Future:
        """Queue a segment for transcription. The future resolves to a TranscriptionResult."""
        future = Future()
        self._queue.put(_Request(future, audio, mime_type, options or WhisperOptions()))
        self.logger.debug(f"Queued transcription request ({len(audio)} bytes, {self.queue_length} pending)")
        return future

    def clear_queue(self) -> int:
        """Cancel every pending request. Returns how many were cancelled."""
        cancelled = 0
        while True:
            try:
                request = self._queue.get_nowait()
            except queue.Empty:
                break
            if request is None:
                # Keep the shutdown sentinel for the worker
                self._queue.put(None)
                break
            if request.future.set_running_or_notify_cancel():
                request.future.set_exception(TranscriptionError("Request cancelled"))
            cancelled += 1
        if cancelled:
            self.logger.info(f"Cancelled {cancelled} pending transcription requests")
        return cancelled

    def _process_queue(self):
        while True:
            request = self._queue.get()
            if request is None:
                break
            if not request.future.set_running_or_notify_cancel():
                continue

            self._processing.set()
            try:
                result = self.transcribe_with_retry(request.audio, request.mime_type, request.options)
            except Exception as e:
                self.logger.error(f"Transcription failed: {e}")
                request.future.set_exception(e)
            else:
                request.future.set_result(result)
            finally:
                self._processing.clear()

            self.sleep(self.request_spacing)

    def shutdown(self, cancel_pending=True, timeout=5.0):
        """Stop the worker thread after the current request."""
        if cancel_pending:
            self.clear_queue()
        self._queue.put(None)
        self._worker.join(timeout=timeout)
