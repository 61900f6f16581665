"""
Voice activity detection for the smart transcriber.
Combines feature extraction, background noise tracking and classification.
"""

import logging

from smart_transcriber.core.feature_extractor import FeatureExtractor
from smart_transcriber.core.noise_tracker import BackgroundNoiseTracker
from smart_transcriber.core.voice_classifier import VoiceClassifier, DetectionThresholds
from smart_transcriber.models.detection import SpectrumFrame, VoiceDetectionResult


class VoiceActivityDetector:
    """Detects human voice frame by frame. One instance per recording session."""

    def __init__(self, sample_rate=44100, fft_size=256, thresholds=None):
        """Initialize the detector for the given analysis configuration."""
        self.logger = logging.getLogger(__name__)
        self.feature_extractor = FeatureExtractor(sample_rate, fft_size)
        self.noise_tracker = BackgroundNoiseTracker()
        self.classifier = VoiceClassifier(self.feature_extractor.bands, thresholds or DetectionThresholds())

    @classmethod
    def from_settings(cls, settings):
        return cls(sample_rate=settings.sample_rate, fft_size=settings.fft_size)

    def detect(self, frame: SpectrumFrame) -> VoiceDetectionResult:
        """
        Run feature extraction, noise tracking and classification on a frame.

        Raises:
            FrameError: If the frame is malformed. History is left untouched.
        """
        features = self.feature_extractor.extract(frame)
        self.noise_tracker.update(features.short_time_energy)
        return self.classifier.classify(features, frame.frequency_magnitudes)

    @property
    def background_noise_level(self):
        return self.noise_tracker.background_noise_level

    @property
    def adaptive_threshold(self):
        return self.noise_tracker.adaptive_threshold

    def reset(self):
        """Clear all history. Called at the start of every recording session."""
        self.feature_extractor.reset()
        self.noise_tracker.reset()
