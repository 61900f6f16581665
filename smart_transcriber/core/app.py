"""
Main application class for the smart transcriber.
Coordinates capture, detection, transcription and the transcript store, and
reports progress to listeners from worker threads.
"""

import threading
import queue
import logging
import functools
import typing as t

from smart_transcriber.core.audio_processor import AudioProcessor
from smart_transcriber.core.speech_detector import SpeechDetector
from smart_transcriber.core.segment_store import TranscriptSegmentStore
from smart_transcriber.core.transcriber import Transcriber, WhisperOptions, create_backend
from smart_transcriber.models.speech_segment import AudioSegment
from smart_transcriber.utils.config_manager import ConfigManager
from smart_transcriber.utils.error_handling import CaptureError, TranscriptionError, log_exceptions, safe_execution


class TranscriberListener:
    """
    Receives application events. Every method is optional.

    Methods are called from worker threads, never from the caller's thread.
    """

    def on_segment_update(self, segment):
        """A transcript segment was added, completed or failed."""

    def on_audio_level(self, level):
        """Audio level (0..100) for the latest detection tick."""

    def on_detection(self, result):
        """Full VoiceDetectionResult for the latest detection tick."""

    def on_error(self, error):
        """A capture or transcription error occurred."""

    def on_recording_state(self, is_recording):
        """Recording started or stopped."""


class SmartTranscriberApp:
    """Main application class that coordinates all components."""

    QUEUE_POLL_TIMEOUT = 0.2
    THREAD_JOIN_TIMEOUT = 2.0

    # Settings whose change requires a new transcription backend
    BACKEND_KEYS = ("backend", "openai_api_key", "api_base_url", "request_timeout", "local_model_size", "device")

    def __init__(self, config_manager=None, settings=None, backend=None, audio_processor=None):
        """
        Initialize the application and its components.

        Args:
            config_manager: ConfigManager used to load and save settings
            settings: Settings to use instead of loading them
            backend: Transcription backend to use instead of the configured one
            audio_processor: Frame source to use instead of the microphone
        """
        self.logger = logging.getLogger(__name__)
        self.logger.info("Initializing SmartTranscriberApp")

        self.config_manager = config_manager or ConfigManager()
        self.settings = settings or self.config_manager.load_settings()

        self.segment_queue = queue.Queue()
        self.level_queue = queue.Queue()
        self.store = TranscriptSegmentStore()
        self.listeners: t.List[TranscriberListener] = []

        self.audio_processor = audio_processor or AudioProcessor(self.settings)
        self.speech_detector = SpeechDetector(
            self.settings,
            self.segment_queue,
            self.level_queue,
            preprocessor=self._preprocess,
        )
        self._backend = backend
        self.transcriber: t.Optional[Transcriber] = None

        self.active = False
        self.detection_event = threading.Event()
        self.detection_thread = None
        self.queue_processor_thread = None
        self.is_processing_queue = False
        self._state_lock = threading.Lock()

    def _preprocess(self, pcm):
        return self.audio_processor.preprocess_audio(pcm)

    def add_listener(self, listener: TranscriberListener):
        self.listeners.append(listener)

    def remove_listener(self, listener: TranscriberListener):
        if listener in self.listeners:
            self.listeners.remove(listener)

    def _notify(self, event, *args):
        for listener in list(self.listeners):
            self._call_listener(listener, event, *args)

    @safe_execution(log_error=True)
    def _call_listener(self, listener, event, *args):
        getattr(listener, event)(*args)

    def initialize(self):
        """
        Validate configuration and start the transcription worker.

        Raises:
            ConfigurationError: If the selected backend is missing credentials
        """
        if self._backend is None:
            self.config_manager.require_credentials(self.settings)
            self._backend = create_backend(self.settings)
        if self.transcriber is None:
            self.transcriber = Transcriber(self._backend)
        self.start_queue_processor()
        self.logger.info(f"Initialized with {self._backend.name} transcription backend")

    @property
    def is_recording(self):
        return self.active

    def start_recording(self):
        """
        Open the microphone and start a detection session.

        Raises:
            CaptureError: If no input device can be opened. Listeners are
                notified before it is raised.
        """
        with self._state_lock:
            if self.active:
                self.logger.warning("Recording already active")
                return
            if self.transcriber is None:
                self.initialize()

            self.audio_processor.update_settings(self.settings)
            try:
                self.audio_processor.start_stream()
            except CaptureError as e:
                self.logger.error(f"Could not start recording: {e}")
                self._notify("on_error", e)
                raise

            self.active = True
            self.detection_event.clear()
            self.detection_thread = threading.Thread(target=self._listen, name="SpeechDetection", daemon=True)
            self.detection_thread.start()
        self.logger.info("Recording started")
        self._notify("on_recording_state", True)

    def stop_recording(self):
        """Stop the detection session. Queued and in-flight transcriptions still complete."""
        with self._state_lock:
            if not self.active and self.detection_thread is None:
                return
            self.active = False
            self.detection_event.set()

            if self.detection_thread and self.detection_thread.is_alive():
                self.detection_thread.join(timeout=self.THREAD_JOIN_TIMEOUT)
                if self.detection_thread.is_alive():
                    self.logger.warning("Detection thread did not terminate gracefully.")
            self.detection_thread = None
            self.audio_processor.stop_stream()

        remaining = self.segment_queue.qsize()
        if remaining > 0:
            self.logger.info(f"Processing {remaining} remaining speech segments...")
        self.logger.info("Recording stopped")
        self._notify("on_recording_state", False)

    def _listen(self):
        """Target method for the detection thread."""
        try:
            self.speech_detector.start_detection(self.audio_processor, self.detection_event)
        except Exception as e:
            self._notify("on_error", e)
        finally:
            self.logger.info("Detection thread finished.")
            if self.active:
                self.logger.warning("Detection thread exited while app was still active.")
                self.active = False
                self._notify("on_recording_state", False)

    def start_queue_processor(self):
        """Start the segment queue worker thread."""
        if self.queue_processor_thread is None or not self.queue_processor_thread.is_alive():
            self.is_processing_queue = True
            self.queue_processor_thread = threading.Thread(target=self.process_segment_queue,
                                                           name="SegmentQueue", daemon=True)
            self.queue_processor_thread.start()
            self.logger.info("Segment queue processor thread started")
        else:
            self.logger.warning("Queue processor thread already running.")

    def stop_queue_processor(self):
        """Stop the queue processor thread."""
        self.logger.info("Stopping segment queue processor thread...")
        self.is_processing_queue = False
        if self.queue_processor_thread and self.queue_processor_thread.is_alive():
            self.queue_processor_thread.join(timeout=self.THREAD_JOIN_TIMEOUT)
        self.queue_processor_thread = None

    def process_segment_queue(self):
        """Hand segments to the transcriber and forward detection results (runs in its own thread)."""
        while self.is_processing_queue:
            self._drain_level_queue()
            try:
                segment = self.segment_queue.get(timeout=self.QUEUE_POLL_TIMEOUT)
            except queue.Empty:
                continue
            try:
                self.submit_segment(segment)
            except Exception as e:
                self.logger.error(f"Error processing speech segment in queue: {str(e)}", exc_info=True)
            finally:
                self.segment_queue.task_done()
        self._drain_level_queue()
        self.logger.info("Segment queue processor thread finished.")

    def _drain_level_queue(self):
        while True:
            try:
                result = self.level_queue.get_nowait()
            except queue.Empty:
                return
            self._notify("on_audio_level", result.audio_level)
            self._notify("on_detection", result)

    @log_exceptions
    def submit_segment(self, audio_segment: AudioSegment):
        """Register a segment in the store and queue it for transcription."""
        transcript = self.store.add_processing(audio_segment)
        self._notify("on_segment_update", transcript)
        self.audio_processor.save_debug_audio(audio_segment.audio_data, audio_segment.segment_id)

        future = self.transcriber.submit(
            audio_segment.audio_data,
            audio_segment.mime_type,
            WhisperOptions.from_settings(self.settings),
        )
        future.add_done_callback(functools.partial(self._on_transcription_done, audio_segment.segment_id))
        return future

    def _on_transcription_done(self, segment_id, future):
        error = TranscriptionError("Request cancelled") if future.cancelled() else future.exception()
        if error is not None:
            segment = self.store.fail(segment_id)
            self.logger.error(f"Transcription failed for {segment_id}: {error}")
            if segment is not None:
                self._notify("on_segment_update", segment)
            self._notify("on_error", error)
            return

        segment = self.store.complete(segment_id, future.result())
        if segment is not None:
            self.logger.info(f"Transcribed {segment_id}: {segment.text!r}")
            self._notify("on_segment_update", segment)

    def get_all_segments(self):
        return self.store.get_all()

    def get_stale_segments(self):
        return self.store.stale_segments(self.settings.stale_segment_timeout)

    def export_transcript(self, format="text", include_timestamps=False):
        return self.store.export(format=format, include_timestamps=include_timestamps)

    def clear_transcript(self):
        self.store.clear()

    def get_current_audio_level(self):
        result = self.speech_detector.last_result
        return result.audio_level if result is not None else 0.0

    def update_settings(self, changes, save=True):
        """
        Apply grouped setting changes (the ``Settings.to_dict`` layout).

        Detection and capture changes take effect at the next recording session.
        """
        previous = tuple(getattr(self.settings, key) for key in self.BACKEND_KEYS)
        self.settings.update(changes)
        self.settings = self.config_manager.validate_settings(self.settings)

        self.speech_detector.update_settings(self.settings)
        if not self.active:
            self.audio_processor.update_settings(self.settings)

        current = tuple(getattr(self.settings, key) for key in self.BACKEND_KEYS)
        if current != previous and self.transcriber is not None:
            self.config_manager.require_credentials(self.settings)
            self._backend = create_backend(self.settings)
            self.transcriber.backend = self._backend
            self.logger.info(f"Switched to {self._backend.name} transcription backend")

        if save:
            self.config_manager.save_settings(self.settings)
        return self.settings

    def dispose(self):
        """Shut down threads and release audio resources."""
        self.logger.info("Disposing application")
        self.stop_recording()
        self.stop_queue_processor()
        if self.transcriber is not None:
            self.transcriber.shutdown(cancel_pending=False)
        self.audio_processor.cleanup()
