"""
Noise suppression building blocks: spectral subtraction, an LMS adaptive
filter and wavelet-style soft-threshold denoising.

SignalProcessor chains them on the post-processing path. Its output never
feeds back into voice detection or segmentation.
"""

import logging
import typing as t

import numpy as np

logger = logging.getLogger(__name__)


class SpectralSubtraction:
    """Per-bin spectral subtraction against a noise estimate learned in silence."""

    def __init__(self, spectrum_size: int, alpha=2.0, beta=0.01, smoothing=0.8, noise_decay=0.95):
        """
        Args:
            spectrum_size: Number of frequency bins
            alpha: Over-subtraction factor
            beta: Gain floor
            smoothing: Weight of the raw gain when smoothing toward the floor
            noise_decay: Weight of the old estimate in the moving average
        """
        self.spectrum_size = spectrum_size
        self.alpha = alpha
        self.beta = beta
        self.smoothing = smoothing
        self.noise_decay = noise_decay
        self.noise_spectrum = np.zeros(spectrum_size, dtype=np.float64)
        self.is_initialized = False

    def update_noise_estimate(self, spectrum, is_voice: bool) -> None:
        """Fold a silent frame into the noise estimate. Voiced frames are ignored."""
        if is_voice:
            return
        spectrum = np.asarray(spectrum, dtype=np.float64)
        if not self.is_initialized:
            self.noise_spectrum = spectrum.copy()
            self.is_initialized = True
        else:
            self.noise_spectrum = self.noise_decay * self.noise_spectrum + (1 - self.noise_decay) * spectrum

    def smooth_gain(self, gain):
        """Pull the gain toward the floor to limit musical-noise artifacts."""
        return self.smoothing * gain + (1 - self.smoothing) * self.beta

    def suppress(self, spectrum):
        """Return the enhanced spectrum, or the input unchanged before any noise was seen."""
        if not self.is_initialized:
            return spectrum

        signal_spectrum = np.asarray(spectrum, dtype=np.float64)
        noise = self.noise_spectrum
        enhanced = signal_spectrum.copy()
        mask = (signal_spectrum > 0) & (noise > 0)
        if np.any(mask):
            snr = signal_spectrum[mask] / noise[mask]
            gain = np.maximum(self.beta, 1 - self.alpha / snr)
            enhanced[mask] = self.smooth_gain(gain) * signal_spectrum[mask]
        return enhanced

    def reset(self):
        self.noise_spectrum = np.zeros(self.spectrum_size, dtype=np.float64)
        self.is_initialized = False


class AdaptiveFilter:
    """Least-mean-squares FIR filter.

    Not used by SignalProcessor.process_signal; available for echo or
    reference-noise cancellation experiments.
    """

    MIN_LEARNING_RATE = 0.001
    MAX_LEARNING_RATE = 0.1
    INITIAL_WEIGHT_SPREAD = 0.001

    def __init__(self, filter_length=32, learning_rate=0.01, rng: t.Optional[np.random.Generator] = None):
        self.filter_length = filter_length
        self.learning_rate = learning_rate
        self._rng = rng or np.random.default_rng()
        self.weights = self._initial_weights()

    def _initial_weights(self):
        return (self._rng.random(self.filter_length) - 0.5) * self.INITIAL_WEIGHT_SPREAD

    def adapt(self, input_signal, desired: float) -> float:
        """
        Filter the last ``filter_length`` input samples and update the weights.

        Args:
            input_signal: Input samples, most recent last
            desired: Target output for this step

        Returns:
            The filter output before the update, or ``desired`` when the input
            is shorter than the filter
        """
        samples = np.asarray(input_signal, dtype=np.float64)
        if len(samples) < self.filter_length:
            return desired

        window = samples[-self.filter_length:]
        output = float(np.dot(self.weights, window))
        error = desired - output
        self.weights = self.weights + self.learning_rate * error * window
        return output

    def set_learning_rate(self, rate: float) -> None:
        self.learning_rate = max(self.MIN_LEARNING_RATE, min(self.MAX_LEARNING_RATE, rate))

    def reset(self):
        self.weights = self._initial_weights()


class WaveletDenoising:
    """Soft-threshold denoising applied sample by sample."""

    MIN_THRESHOLD = 0.05
    MAX_THRESHOLD = 0.3

    def __init__(self, threshold=0.1):
        self.threshold = threshold

    def denoise(self, signal):
        samples = np.asarray(signal, dtype=np.float64)
        return np.sign(samples) * np.maximum(0.0, np.abs(samples) - self.threshold)

    def set_adaptive_threshold(self, noise_level: float) -> None:
        """Threshold is twice the noise level, clamped to 0.05..0.3."""
        self.threshold = max(self.MIN_THRESHOLD, min(self.MAX_THRESHOLD, noise_level * 2))


class SignalProcessor:
    """Chains the suppression algorithms for one session."""

    def __init__(self, spectrum_size: int, enabled=True):
        self.logger = logging.getLogger(__name__)
        self.spectral_subtraction = SpectralSubtraction(spectrum_size)
        self.adaptive_filter = AdaptiveFilter()
        self.wavelet_denoising = WaveletDenoising()
        self.enabled = enabled
        # Denoised time signal from the last call. Not merged into the output yet.
        self.last_denoised_signal: t.Optional[np.ndarray] = None

    def process_signal(self, spectrum, time_signal, is_voice: bool, noise_level: float):
        """
        Enhance one frame.

        Args:
            spectrum: Frequency magnitudes of the frame
            time_signal: Time-domain samples of the frame
            is_voice: Classifier decision for the frame
            noise_level: Current background noise level

        Returns:
            The spectrum, spectrally subtracted when the frame is voiced
        """
        if not self.enabled:
            return spectrum

        processed = spectrum

        self.spectral_subtraction.update_noise_estimate(spectrum, is_voice)
        if is_voice:
            processed = self.spectral_subtraction.suppress(processed)

        self.wavelet_denoising.set_adaptive_threshold(noise_level)

        # Computed but not yet combined with the spectrum
        if len(time_signal) > 0:
            self.last_denoised_signal = self.wavelet_denoising.denoise(time_signal)

        return processed

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled

    def reset(self):
        self.spectral_subtraction.reset()
        self.adaptive_filter.reset()
        self.last_denoised_signal = None

    def get_status(self):
        return {
            "enabled": self.enabled,
            "spectral_subtraction_ready": self.spectral_subtraction.is_initialized,
        }
