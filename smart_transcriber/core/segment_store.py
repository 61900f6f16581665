"""
In-memory store of transcript segments, keyed by segment id.
Completion callbacks may arrive in any order and from any thread.
"""

import json
import logging
import threading
from datetime import datetime, timedelta
import typing as t

from smart_transcriber.models.speech_segment import (
    AudioSegment,
    TranscriptSegment,
    TranscriptionResult,
    FAILED_TRANSCRIPTION_TEXT,
)
from smart_transcriber.utils.text_processing import format_transcript_line

DEFAULT_STALE_SECONDS = 30


class TranscriptSegmentStore:
    """Thread-safe mapping from segment id to TranscriptSegment."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._segments: t.Dict[str, TranscriptSegment] = {}
        self._lock = threading.RLock()

    def add_processing(self, audio_segment: AudioSegment) -> TranscriptSegment:
        """Register a segment that has just been handed to the transcription service."""
        segment = TranscriptSegment(
            segment_id=audio_segment.segment_id,
            timestamp=audio_segment.timestamp,
            text="",
            is_processing=True,
            audio_segment=audio_segment,
            duration=audio_segment.duration,
        )
        with self._lock:
            self._segments[segment.segment_id] = segment
        return segment

    def complete(self, segment_id: str, result: TranscriptionResult) -> t.Optional[TranscriptSegment]:
        """
        Record a successful transcription.

        Returns:
            The updated segment, or None if the id is unknown or the segment
            already left the processing state
        """
        with self._lock:
            segment = self._segments.get(segment_id)
            if segment is None or not segment.is_processing:
                self.logger.debug(f"Ignoring completion for {segment_id}: unknown or already finished")
                return None
            segment.text = result.text.strip()
            segment.language = result.language
            if result.duration is not None:
                segment.duration = result.duration
            segment.is_processing = False
            return segment

    def fail(self, segment_id: str) -> t.Optional[TranscriptSegment]:
        """Mark a processing segment as failed. Same idempotency rules as complete()."""
        with self._lock:
            segment = self._segments.get(segment_id)
            if segment is None or not segment.is_processing:
                return None
            segment.text = FAILED_TRANSCRIPTION_TEXT
            segment.is_processing = False
            return segment

    def get(self, segment_id: str) -> t.Optional[TranscriptSegment]:
        with self._lock:
            return self._segments.get(segment_id)

    def get_all(self) -> t.List[TranscriptSegment]:
        """All segments sorted by timestamp, oldest first."""
        with self._lock:
            return sorted(self._segments.values(), key=lambda s: s.timestamp)

    def update_text(self, segment_id: str, text: str) -> t.Optional[TranscriptSegment]:
        """Replace a segment's text (manual correction). Returns None for unknown ids."""
        with self._lock:
            segment = self._segments.get(segment_id)
            if segment is None:
                return None
            segment.text = text
            return segment

    def delete(self, segment_id: str) -> bool:
        with self._lock:
            return self._segments.pop(segment_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._segments.clear()

    def processing_count(self) -> int:
        with self._lock:
            return sum(1 for s in self._segments.values() if s.is_processing)

    def stale_segments(self, max_age_seconds=DEFAULT_STALE_SECONDS, now: t.Optional[datetime] = None):
        """
        Segments still processing after ``max_age_seconds``.

        The store never fails these itself; a display layer may drop or mark them.
        """
        now = now or datetime.now()
        cutoff = now - timedelta(seconds=max_age_seconds)
        with self._lock:
            return [s for s in self._segments.values() if s.is_processing and s.timestamp < cutoff]

    def export(self, format="text", include_timestamps=False) -> str:
        """
        Export finished segments in timestamp order.

        Args:
            format: "text" for one line per segment, "json" for a JSON array
            include_timestamps: Prefix text lines with ``[ISO timestamp]``

        Returns:
            The exported transcript
        """
        segments = [s for s in self.get_all() if not s.is_processing]

        if format == "json":
            return json.dumps([s.to_dict() for s in segments], indent=2, ensure_ascii=False)
        if format != "text":
            raise ValueError(f"Unsupported export format: {format}")

        return "\n".join(
            format_transcript_line(s.text, s.timestamp if include_timestamps else None)
            for s in segments
        )

    def __len__(self):
        with self._lock:
            return len(self._segments)
