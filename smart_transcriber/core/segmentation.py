"""
Voice-gated segmentation policy.

A segment becomes ripe once enough voiced seconds have accumulated, then
waits for a pause before it is cut. Segments can run past their nominal
duration while the speaker keeps talking, so words are never split.

The state machine is not thread-safe. Callers serialize ``on_second_tick``
and ``on_detection`` (SpeechDetector does this with a single lock).
"""

import logging
import time
from dataclasses import dataclass
import typing as t

from smart_transcriber.models.detection import VoiceDetectionResult

logger = logging.getLogger(__name__)

# Gates applied on top of the classifier's own decision
MIN_CONFIDENCE = 0.3
MIN_AUDIO_LEVEL = 20

DEFAULT_SEGMENT_DURATION = 8  # seconds
DEFAULT_PAUSE_THRESHOLD_MS = 1000


@dataclass
class SegmentationState:
    """Mutable timing state for one recording session."""
    is_recording: bool = False
    is_voice_active: bool = False
    was_voice_active: bool = False
    total_recording_time: int = 0
    active_recording_time: int = 0
    segment_recording_time: int = 0
    is_segment_ready: bool = False
    last_voice_end_time: float = 0.0
    segments_emitted: int = 0
    voice_since_emission: bool = False


class SegmentationStateMachine:
    """Decides when the buffered audio should be cut into a segment."""

    def __init__(self, segment_duration=DEFAULT_SEGMENT_DURATION,
                 pause_threshold_ms=DEFAULT_PAUSE_THRESHOLD_MS,
                 min_confidence=MIN_CONFIDENCE, min_audio_level=MIN_AUDIO_LEVEL,
                 clock: t.Callable[[], float] = time.monotonic):
        """
        Args:
            segment_duration: Voiced seconds before a segment is ripe
            pause_threshold_ms: Silence required after voice before a ripe
                segment is emitted
            min_confidence: Classifier confidence needed to count as voice
            min_audio_level: Audio level (0..100) needed to count as voice
            clock: Monotonic clock in seconds, used when ``now`` is omitted
        """
        self.segment_duration = segment_duration
        self.pause_threshold_ms = pause_threshold_ms
        self.min_confidence = min_confidence
        self.min_audio_level = min_audio_level
        self.clock = clock
        self.state = SegmentationState()

    @classmethod
    def from_settings(cls, settings, clock=time.monotonic):
        return cls(
            segment_duration=settings.segment_duration,
            pause_threshold_ms=settings.pause_threshold,
            clock=clock,
        )

    @property
    def is_recording(self):
        return self.state.is_recording

    def start(self, now: t.Optional[float] = None) -> None:
        """Enter the Recording phase with fresh counters."""
        now = self.clock() if now is None else now
        self.state = SegmentationState(is_recording=True, last_voice_end_time=now)

    def stop(self) -> None:
        """Return to Idle. Later ticks are ignored."""
        self.state.is_recording = False
        self.state.is_voice_active = False

    def is_voice_detected(self, result: VoiceDetectionResult) -> bool:
        """Apply the confidence and level gates to a classifier result."""
        return (result.is_human_voice
                and result.confidence > self.min_confidence
                and result.audio_level > self.min_audio_level)

    def on_second_tick(self) -> None:
        """Advance the per-second counters."""
        state = self.state
        if not state.is_recording:
            return

        state.total_recording_time += 1
        if state.is_voice_active:
            state.active_recording_time += 1
            state.segment_recording_time += 1
            if state.segment_recording_time >= self.segment_duration and not state.is_segment_ready:
                state.is_segment_ready = True
                logger.debug(f"Segment ripe after {state.segment_recording_time}s of voice, waiting for a pause")

    def on_detection(self, result: VoiceDetectionResult, now: t.Optional[float] = None) -> bool:
        """
        Feed one detection tick.

        Args:
            result: Classifier output for the tick
            now: Tick time in seconds on the machine's clock

        Returns:
            True if the buffered audio should be emitted as a segment now
        """
        state = self.state
        if not state.is_recording:
            return False
        now = self.clock() if now is None else now

        voice_detected = self.is_voice_detected(result)

        if voice_detected and not state.is_voice_active:
            state.is_voice_active = True
            state.voice_since_emission = True
        elif not voice_detected and state.is_voice_active:
            state.is_voice_active = False

        # Voice just stopped: start timing the pause
        if state.was_voice_active and not state.is_voice_active:
            state.last_voice_end_time = now
        state.was_voice_active = state.is_voice_active

        if (state.is_segment_ready and not state.is_voice_active
                and (now - state.last_voice_end_time) * 1000 >= self.pause_threshold_ms):
            state.is_segment_ready = False
            state.segment_recording_time = 0
            state.segments_emitted += 1
            state.voice_since_emission = False
            return True
        return False

    def has_pending_voice(self) -> bool:
        """True if voice has been heard since the last emission."""
        return self.state.voice_since_emission
