"""
Heuristic human-voice / computer-audio classifier.

Scores the extracted features against a fixed table of weighted rules. The
thresholds and weights are hand-tuned; changing any of them changes which
frames count as speech.
"""

import logging
from dataclasses import dataclass
import typing as t

import numpy as np

from smart_transcriber.core.feature_extractor import FrequencyBands, band_energy
from smart_transcriber.models.detection import VoiceDetectionResult, VoiceFeatures

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionThresholds:
    """Decision thresholds for the classifier."""
    min_voice_energy: float = 0.01  # below this the frame is silence
    min_fundamental_energy: float = 0.01
    voice_formant_ratio: float = 1.5
    voice_zcr_range: t.Tuple[float, float] = (0.1, 0.5)  # inclusive
    voice_centroid_range: t.Tuple[float, float] = (0.2, 0.6)  # exclusive
    computer_audio_high_freq_ratio: float = 0.5
    computer_audio_rolloff: float = 0.7
    computer_audio_energy_variation: float = 0.01
    min_human_voice_score: float = 0.2
    min_computer_audio_score: float = 0.3
    silence_confidence: float = 0.9
    ratio_epsilon: float = 0.001
    audio_level_scale: float = 1000.0
    max_audio_level: float = 100.0


@dataclass(frozen=True)
class ScoreWeights:
    """Evidence added to each score when its rule fires."""
    fundamental: float = 0.3
    formant_ratio: float = 0.4
    zero_crossing: float = 0.2
    centroid: float = 0.1
    high_frequency: float = 0.3
    rolloff: float = 0.2
    stable_energy: float = 0.1


class VoiceClassifier:
    """Turns VoiceFeatures into a VoiceDetectionResult."""

    def __init__(self, bands: t.Optional[FrequencyBands] = None,
                 thresholds: t.Optional[DetectionThresholds] = None,
                 weights: t.Optional[ScoreWeights] = None):
        self.bands = bands or FrequencyBands.for_config()
        self.thresholds = thresholds or DetectionThresholds()
        self.weights = weights or ScoreWeights()

    def audio_level(self, features: VoiceFeatures) -> float:
        """Display level in 0..100 derived from short-time energy."""
        th = self.thresholds
        return min(th.max_audio_level, max(0.0, features.short_time_energy * th.audio_level_scale))

    def human_voice_score(self, features: VoiceFeatures) -> float:
        th, w = self.thresholds, self.weights
        score = 0.0
        if features.fundamental_energy > th.min_fundamental_energy:
            score += w.fundamental
        formant_ratio = features.formant_energy / (features.fundamental_energy + th.ratio_epsilon)
        if formant_ratio > th.voice_formant_ratio:
            score += w.formant_ratio
        min_zcr, max_zcr = th.voice_zcr_range
        if min_zcr <= features.zero_crossing_rate <= max_zcr:
            score += w.zero_crossing
        low, high = th.voice_centroid_range
        if low < features.spectral_centroid < high:
            score += w.centroid
        return score

    def computer_audio_score(self, features: VoiceFeatures, spectrum: np.ndarray) -> float:
        th, w = self.thresholds, self.weights
        score = 0.0
        high_freq_energy = band_energy(spectrum, *self.bands.high_frequency)
        if high_freq_energy / (features.short_time_energy + th.ratio_epsilon) > th.computer_audio_high_freq_ratio:
            score += w.high_frequency
        if features.spectral_rolloff > th.computer_audio_rolloff:
            score += w.rolloff
        if features.energy_variation < th.computer_audio_energy_variation:
            score += w.stable_energy
        return score

    def classify(self, features: VoiceFeatures, raw_frequency_magnitudes) -> VoiceDetectionResult:
        """
        Classify one frame.

        Args:
            features: Features extracted from the frame
            raw_frequency_magnitudes: The frame's 0..1 magnitudes, used for the
                high-frequency band

        Returns:
            VoiceDetectionResult. Ambiguous frames have both flags false.
        """
        th = self.thresholds

        # Fast silence path
        if features.short_time_energy < th.min_voice_energy:
            return VoiceDetectionResult(
                is_human_voice=False,
                is_computer_audio=False,
                confidence=th.silence_confidence,
                features=features,
                audio_level=0.0,
            )

        spectrum = np.asarray(raw_frequency_magnitudes, dtype=np.float64)
        human_score = self.human_voice_score(features)
        computer_score = self.computer_audio_score(features, spectrum)
        total_score = human_score + computer_score
        level = self.audio_level(features)

        if total_score == 0:
            return VoiceDetectionResult(False, False, 0.0, features, level)

        confidence = min(1.0, total_score)

        if human_score > computer_score and human_score > th.min_human_voice_score:
            return VoiceDetectionResult(True, False, confidence, features, level)
        if computer_score > th.min_computer_audio_score:
            return VoiceDetectionResult(False, True, confidence, features, level)

        # Nothing decisive; segmentation treats this as silence
        return VoiceDetectionResult(False, False, confidence, features, level)
