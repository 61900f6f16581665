"""
Speech detection functionality for the smart transcriber.
Runs one recording session: classifies frames, tracks segment timing and
cuts the buffered PCM into WAV segments.
"""

import time
import logging
import threading
from datetime import datetime
import typing as t

from smart_transcriber.core.voice_activity_detector import VoiceActivityDetector
from smart_transcriber.core.signal_processor import SignalProcessor
from smart_transcriber.core.segmentation import SegmentationStateMachine
from smart_transcriber.models.detection import VoiceDetectionResult
from smart_transcriber.models.speech_segment import AudioSegment
from smart_transcriber.utils.audio_utils import pcm_to_wav_bytes, PCM_SAMPLE_WIDTH
from smart_transcriber.utils.error_handling import FrameError, log_exceptions


class SpeechDetector:
    """Detects speech segments in a stream of spectrum frames."""
    # Encoded segments at or below this size carry no usable audio
    MIN_SEGMENT_BYTES = 1000
    SECOND_TICK_INTERVAL = 1.0
    # Audio kept ahead of the first voiced frame while nothing is pending
    PRE_ROLL_SECONDS = 1.0

    def __init__(self, settings, segment_queue, level_queue=None,
                 clock: t.Callable[[], float] = time.monotonic,
                 preprocessor: t.Optional[t.Callable[[bytes], bytes]] = None):
        """
        Initialize the speech detector with the given settings.

        Args:
            settings: Settings object
            segment_queue: Queue receiving AudioSegment objects
            level_queue: Optional queue receiving each tick's VoiceDetectionResult
            clock: Monotonic clock in seconds
            preprocessor: Optional PCM-to-PCM transform applied before encoding
        """
        self.logger = logging.getLogger(__name__)
        self.settings = settings
        self.segment_queue = segment_queue
        self.level_queue = level_queue
        self.clock = clock
        self.preprocessor = preprocessor
        self._lock = threading.Lock()
        self._buffer = bytearray()
        self._last_result = None
        self._pipeline_stale = False
        self._build_pipeline()

    def _build_pipeline(self):
        self.sample_rate = self.settings.sample_rate
        self.detector = VoiceActivityDetector.from_settings(self.settings)
        self.signal_processor = SignalProcessor(
            self.detector.feature_extractor.bin_count,
            enabled=self.settings.use_signal_processing,
        )
        self.machine = SegmentationStateMachine.from_settings(self.settings, clock=self.clock)

    def update_settings(self, settings):
        """Update the settings used by the speech detector. Applies from the next session."""
        with self._lock:
            self.settings = settings
            if self.machine.is_recording:
                self._pipeline_stale = True
            else:
                self._build_pipeline()
                self._pipeline_stale = False

    @property
    def is_active(self):
        return self.machine.is_recording

    @property
    def last_result(self) -> t.Optional[VoiceDetectionResult]:
        return self._last_result

    def begin_session(self, now: t.Optional[float] = None):
        """Reset all per-session state and start recording."""
        with self._lock:
            if self._pipeline_stale:
                self._build_pipeline()
                self._pipeline_stale = False
            self.detector.reset()
            self.signal_processor.reset()
            self._buffer.clear()
            self._last_result = None
            self.machine.start(now)
        self.logger.info("Speech detection session started")

    def end_session(self, flush=True):
        """
        Stop recording.

        Args:
            flush: Emit the remaining buffer if voice was heard since the last cut
        """
        with self._lock:
            if not self.machine.is_recording:
                return
            if flush and self.machine.has_pending_voice():
                self.logger.info("Flushing buffered audio at end of session")
                self._emit_segment()
            self.machine.stop()
            self._buffer.clear()
        self.logger.info("Speech detection session ended")

    def process_frame(self, frame, pcm: bytes = b"", now: t.Optional[float] = None) -> VoiceDetectionResult:
        """
        Handle one detection tick.

        Returns:
            The tick's detection result (silence if the frame was unusable)
        """
        with self._lock:
            if not self.machine.is_recording:
                return VoiceDetectionResult.silence()
            now = self.clock() if now is None else now
            self._buffer.extend(pcm)

            try:
                result = self.detector.detect(frame)
            except FrameError as e:
                self.logger.warning(f"Skipping malformed frame: {e}")
                result = None
            except Exception as e:
                self.logger.error(f"Voice detection failed: {e}", exc_info=True)
                result = None

            if result is None:
                result = VoiceDetectionResult.silence()
            else:
                self._suppress_noise(frame, result)

            self._last_result = result
            if self.level_queue is not None:
                self.level_queue.put(result)

            if self.machine.on_detection(result, now):
                self._emit_segment()
            elif not self.machine.has_pending_voice():
                self._trim_pre_roll()
            return result

    def _trim_pre_roll(self):
        keep = int(self.PRE_ROLL_SECONDS * self.sample_rate) * PCM_SAMPLE_WIDTH
        if len(self._buffer) > keep:
            del self._buffer[:len(self._buffer) - keep]

    def _suppress_noise(self, frame, result):
        try:
            self.signal_processor.process_signal(
                frame.frequency_magnitudes,
                frame.time_samples,
                result.is_human_voice,
                self.detector.background_noise_level,
            )
        except Exception as e:
            self.logger.error(f"Signal processing failed: {e}", exc_info=True)

    def tick_second(self):
        """Once-per-second timing tick."""
        with self._lock:
            self.machine.on_second_tick()

    def _emit_segment(self):
        """Encode the buffer and queue it. Caller holds the lock."""
        pcm = bytes(self._buffer)
        self._buffer.clear()

        try:
            if self.preprocessor is not None and self.settings.preprocess_audio and pcm:
                pcm = self.preprocessor(pcm)
            wav = pcm_to_wav_bytes(pcm, self.sample_rate)
        except Exception as e:
            self.logger.error(f"Error encoding speech segment: {e}", exc_info=True)
            return False

        if len(wav) <= self.MIN_SEGMENT_BYTES:
            self.logger.debug(f"Dropping tiny segment ({len(wav)} bytes)")
            return False

        segment = AudioSegment(
            audio_data=wav,
            sample_rate=self.sample_rate,
            timestamp=datetime.now(),
            duration=len(pcm) / PCM_SAMPLE_WIDTH / self.sample_rate,
        )
        self.segment_queue.put(segment)
        self.logger.info(f"Added speech segment {segment.segment_id} to queue "
                         f"({segment.duration:.1f}s, {segment.size} bytes)")
        return True

    def _run_second_ticker(self, termination_event):
        while not termination_event.wait(self.SECOND_TICK_INTERVAL):
            self.tick_second()

    @log_exceptions
    def start_detection(self, frame_source, termination_event):
        """
        Run a session until the termination event is set.

        Args:
            frame_source: Object with ``frames(termination_event)`` yielding
                ``(SpectrumFrame, pcm_bytes)`` pairs
            termination_event: Event to signal thread termination

        Raises:
            CaptureError: If the frame source fails. The buffer is not flushed.
        """
        period = self.settings.frame_period_ms / 1000
        self.begin_session()
        ticker = threading.Thread(
            target=self._run_second_ticker,
            args=(termination_event,),
            name="SecondTicker",
            daemon=True,
        )
        ticker.start()

        completed = False
        try:
            for frame, pcm in frame_source.frames(termination_event):
                started = self.clock()
                self.process_frame(frame, pcm, started)
                elapsed = self.clock() - started
                if elapsed > period:
                    self.logger.debug(f"Detection tick overran its period ({elapsed * 1000:.1f}ms)")
                if termination_event.is_set():
                    break
            completed = True
        finally:
            termination_event.set()
            ticker.join(timeout=2.0)
            self.end_session(flush=completed)
            self.logger.info("Microphone deactivated")
