"""
Spectral and temporal feature extraction for voice activity detection.

Frames are expected in the shape produced by the frame source: ``fft_size / 2``
magnitudes normalized to 0..1 and ``fft_size`` time samples normalized to -1..1.
The frequency bands are calibrated for a 44.1 kHz / 256-point analysis and
rescaled for any other configuration.
"""

import logging
from collections import deque
from dataclasses import dataclass
import typing as t

import numpy as np

from smart_transcriber.models.detection import SpectrumFrame, VoiceFeatures
from smart_transcriber.utils.error_handling import FrameError

logger = logging.getLogger(__name__)

BASELINE_SAMPLE_RATE = 44100
BASELINE_FFT_SIZE = 256

# Bin ranges (inclusive) at the baseline configuration
BASELINE_BANDS = {
    "fundamental": (1, 4),    # ~86 Hz - 344 Hz
    "formant": (12, 47),      # ~1031 Hz - 4031 Hz
    "high_frequency": (48, 127),  # 4 kHz and up
}

ROLLOFF_FRACTION = 0.85
ENERGY_HISTORY_SIZE = 10


@dataclass(frozen=True)
class FrequencyBands:
    """Inclusive bin ranges for the bands the classifier looks at."""
    fundamental: t.Tuple[int, int]
    formant: t.Tuple[int, int]
    high_frequency: t.Tuple[int, int]

    @classmethod
    def for_config(cls, sample_rate=BASELINE_SAMPLE_RATE, fft_size=BASELINE_FFT_SIZE):
        """
        Recompute the band bins for an analysis configuration.

        Each baseline bin is converted to the frequency it represents at
        44.1 kHz / 256 and back with ``bin = freq * fft_size / sample_rate``.

        Args:
            sample_rate: Sample rate of the analysed audio in Hz
            fft_size: FFT size of the analyser

        Returns:
            FrequencyBands with bins clamped to the available bin count
        """
        last_bin = fft_size // 2 - 1

        def rescale(bin_index):
            freq = bin_index * BASELINE_SAMPLE_RATE / BASELINE_FFT_SIZE
            return int(min(last_bin, max(0, round(freq * fft_size / sample_rate))))

        bands = {}
        for name, (start, end) in BASELINE_BANDS.items():
            bands[name] = (rescale(start), rescale(end))
        return cls(**bands)


def band_energy(spectrum: np.ndarray, start: int, end: int) -> float:
    """
    Mean squared magnitude over the bins ``start..end`` inclusive.

    The divisor is always the nominal width of the band, even when the band
    runs past the end of the spectrum.
    """
    stop = min(end, len(spectrum) - 1) + 1
    if stop <= start:
        return 0.0
    segment = spectrum[start:stop]
    return float(np.sum(segment * segment) / (end - start + 1))


def spectral_centroid(spectrum: np.ndarray) -> float:
    """Magnitude-weighted mean bin index, normalized by spectrum length."""
    total = float(np.sum(spectrum))
    if total <= 0:
        return 0.0
    weighted = float(np.sum(np.arange(len(spectrum)) * spectrum))
    return (weighted / total) / len(spectrum)


def spectral_rolloff(spectrum: np.ndarray, fraction: float = ROLLOFF_FRACTION) -> float:
    """Normalized index where the cumulative magnitude reaches ``fraction`` of the total."""
    target = float(np.sum(spectrum)) * fraction
    reached = np.nonzero(np.cumsum(spectrum) >= target)[0]
    if reached.size == 0:
        return 1.0
    return int(reached[0]) / len(spectrum)


def zero_crossing_rate(samples: np.ndarray) -> float:
    """Fraction of adjacent sample pairs that change sign."""
    if len(samples) < 2:
        return 0.0
    prev = samples[:-1]
    curr = samples[1:]
    crossings = ((prev >= 0) & (curr < 0)) | ((prev < 0) & (curr >= 0))
    return int(np.count_nonzero(crossings)) / (len(samples) - 1)


class FeatureExtractor:
    """Extracts VoiceFeatures from consecutive spectrum frames.

    Holds the previous frame's magnitudes (for spectral flux) and the last
    ten short-time energies (for energy variation). One instance per session.
    """

    def __init__(self, sample_rate=BASELINE_SAMPLE_RATE, fft_size=BASELINE_FFT_SIZE):
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.bin_count = fft_size // 2
        self.window_size = fft_size
        self.bands = FrequencyBands.for_config(sample_rate, fft_size)
        self.energy_history = deque(maxlen=ENERGY_HISTORY_SIZE)
        self.previous_spectrum: t.Optional[np.ndarray] = None

    def reset(self):
        """Forget history so the next frame is treated as the first."""
        self.energy_history.clear()
        self.previous_spectrum = None

    def validate_frame(self, frame: SpectrumFrame) -> t.Tuple[np.ndarray, np.ndarray]:
        """Return the frame arrays as float64, raising FrameError if malformed."""
        spectrum = np.asarray(frame.frequency_magnitudes, dtype=np.float64)
        samples = np.asarray(frame.time_samples, dtype=np.float64)
        if spectrum.ndim != 1 or len(spectrum) != self.bin_count:
            raise FrameError(f"Expected {self.bin_count} frequency bins, got shape {spectrum.shape}")
        if samples.ndim != 1 or len(samples) != self.window_size:
            raise FrameError(f"Expected {self.window_size} time samples, got shape {samples.shape}")
        if not (np.all(np.isfinite(spectrum)) and np.all(np.isfinite(samples))):
            raise FrameError("Frame contains non-finite values")
        return spectrum, samples

    def extract(self, frame: SpectrumFrame) -> VoiceFeatures:
        """
        Extract the eight features for a frame and advance the history.

        Args:
            frame: The current spectrum frame

        Returns:
            VoiceFeatures for the frame

        Raises:
            FrameError: If the frame does not match the configured FFT size
        """
        spectrum, samples = self.validate_frame(frame)

        short_time_energy = float(np.mean(spectrum * spectrum))

        self.energy_history.append(short_time_energy)
        energy_variation = 0.0
        if len(self.energy_history) > 1:
            energy_variation = float(np.mean(np.abs(np.diff(np.fromiter(self.energy_history, dtype=np.float64)))))

        spectral_flux = 0.0
        if self.previous_spectrum is not None:
            diff = spectrum - self.previous_spectrum
            spectral_flux = float(np.sqrt(np.mean(diff * diff)))
        self.previous_spectrum = spectrum.copy()

        return VoiceFeatures(
            fundamental_energy=band_energy(spectrum, *self.bands.fundamental),
            formant_energy=band_energy(spectrum, *self.bands.formant),
            spectral_centroid=spectral_centroid(spectrum),
            spectral_rolloff=spectral_rolloff(spectrum),
            zero_crossing_rate=zero_crossing_rate(samples),
            short_time_energy=short_time_energy,
            energy_variation=energy_variation,
            spectral_flux=spectral_flux,
        )
