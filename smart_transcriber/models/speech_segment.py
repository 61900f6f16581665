"""
Segment data models for the smart transcriber.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
import typing as t

FAILED_TRANSCRIPTION_TEXT = "[Transcription failed]"


def generate_segment_id():
    """Return a unique id of the form ``segment_<epoch ms>_<9 hex chars>``."""
    return f"segment_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class AudioSegment:
    """A chunk of recorded audio cut by the segmentation policy."""
    audio_data: bytes  # Encoded container (WAV)
    sample_rate: int
    timestamp: datetime  # Time the segment was cut
    duration: float  # Seconds of audio in the container
    mime_type: str = "audio/wav"
    segment_id: str = field(default_factory=generate_segment_id)

    @property
    def size(self):
        return len(self.audio_data)


@dataclass
class TranscriptSegment:
    """Transcript text for one audio segment, plus its processing state."""
    segment_id: str
    timestamp: datetime
    text: str = ""
    is_processing: bool = True
    audio_segment: t.Optional[AudioSegment] = None
    language: t.Optional[str] = None
    duration: t.Optional[float] = None

    @property
    def failed(self):
        return not self.is_processing and self.text == FAILED_TRANSCRIPTION_TEXT

    def to_dict(self):
        """Serializable view, without the raw audio."""
        return {
            "id": self.segment_id,
            "timestamp": self.timestamp.isoformat(),
            "text": self.text,
            "isProcessing": self.is_processing,
            "language": self.language,
            "duration": self.duration,
        }


@dataclass
class TranscriptionResult:
    """Response returned by a transcription backend."""
    text: str
    language: t.Optional[str] = None
    duration: t.Optional[float] = None
    segments: t.List[dict] = field(default_factory=list)
