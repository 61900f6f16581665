"""
Per-frame detection data models for the smart transcriber.
"""

from dataclasses import dataclass
import numpy as np


@dataclass
class SpectrumFrame:
    """One analysis window delivered by the frame source."""
    frequency_magnitudes: np.ndarray  # 0..1 per FFT bin
    time_samples: np.ndarray  # -1..1, one analysis window


@dataclass(frozen=True)
class VoiceFeatures:
    """The eight scalar features extracted from a frame."""
    fundamental_energy: float = 0.0
    formant_energy: float = 0.0
    spectral_centroid: float = 0.0
    spectral_rolloff: float = 0.0
    zero_crossing_rate: float = 0.0
    short_time_energy: float = 0.0
    energy_variation: float = 0.0
    spectral_flux: float = 0.0


@dataclass(frozen=True)
class VoiceDetectionResult:
    """Classification of a single frame."""
    is_human_voice: bool
    is_computer_audio: bool
    confidence: float  # 0..1
    features: VoiceFeatures
    audio_level: float  # 0..100

    @classmethod
    def silence(cls, features=None):
        """Result used when a tick could not be classified."""
        return cls(
            is_human_voice=False,
            is_computer_audio=False,
            confidence=0.0,
            features=features or VoiceFeatures(),
            audio_level=0.0,
        )
