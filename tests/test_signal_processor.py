"""Unit tests for the noise suppression building blocks."""

from __future__ import annotations

import unittest

import numpy as np

from smart_transcriber.core.signal_processor import (
    AdaptiveFilter,
    SignalProcessor,
    SpectralSubtraction,
    WaveletDenoising,
)


class TestSpectralSubtraction(unittest.TestCase):
    """Tests for SpectralSubtraction."""

    def setUp(self) -> None:
        self.subtraction = SpectralSubtraction(4)

    def test_pass_through_until_initialized(self) -> None:
        spectrum = np.array([0.5, 0.5, 0.5, 0.5])
        self.assertIs(self.subtraction.suppress(spectrum), spectrum)

    def test_voiced_frames_do_not_train(self) -> None:
        self.subtraction.update_noise_estimate(np.ones(4), is_voice=True)
        self.assertFalse(self.subtraction.is_initialized)

    def test_noise_estimate_moving_average(self) -> None:
        self.subtraction.update_noise_estimate(np.full(4, 0.2), is_voice=False)
        np.testing.assert_allclose(self.subtraction.noise_spectrum, 0.2)
        self.subtraction.update_noise_estimate(np.full(4, 0.4), is_voice=False)
        np.testing.assert_allclose(self.subtraction.noise_spectrum, 0.95 * 0.2 + 0.05 * 0.4)

    def test_gain_and_floor(self) -> None:
        self.subtraction.update_noise_estimate(np.full(4, 0.1), is_voice=False)
        enhanced = self.subtraction.suppress(np.array([0.5, 0.1, 0.0, 0.5]))
        # SNR 5: gain 0.6, smoothed 0.8 * 0.6 + 0.2 * 0.01
        self.assertAlmostEqual(enhanced[0], 0.482 * 0.5)
        # SNR 1: gain floored at 0.01, smoothed to 0.01
        self.assertAlmostEqual(enhanced[1], 0.01 * 0.1)
        self.assertEqual(enhanced[2], 0.0)

    def test_reset(self) -> None:
        self.subtraction.update_noise_estimate(np.ones(4), is_voice=False)
        self.subtraction.reset()
        self.assertFalse(self.subtraction.is_initialized)
        np.testing.assert_array_equal(self.subtraction.noise_spectrum, np.zeros(4))


class TestAdaptiveFilter(unittest.TestCase):
    """Tests for the LMS AdaptiveFilter."""

    def test_initial_weights_are_small(self) -> None:
        lms = AdaptiveFilter(rng=np.random.default_rng(0))
        self.assertEqual(len(lms.weights), 32)
        self.assertTrue(np.all(np.abs(lms.weights) <= 0.0005))

    def test_learning_rate_is_clamped(self) -> None:
        lms = AdaptiveFilter()
        lms.set_learning_rate(1.0)
        self.assertEqual(lms.learning_rate, 0.1)
        lms.set_learning_rate(0.0)
        self.assertEqual(lms.learning_rate, 0.001)

    def test_short_input_returns_desired(self) -> None:
        lms = AdaptiveFilter()
        self.assertEqual(lms.adapt(np.ones(5), 0.7), 0.7)

    def test_weight_update(self) -> None:
        lms = AdaptiveFilter(learning_rate=0.01)
        lms.weights = np.zeros(32)
        self.assertEqual(lms.adapt(np.ones(32), 1.0), 0.0)
        np.testing.assert_allclose(lms.weights, 0.01)
        self.assertAlmostEqual(lms.adapt(np.ones(32), 1.0), 0.32)


class TestWaveletDenoising(unittest.TestCase):
    """Tests for WaveletDenoising."""

    def test_soft_threshold(self) -> None:
        denoiser = WaveletDenoising(threshold=0.1)
        np.testing.assert_allclose(denoiser.denoise([0.5, -0.5, 0.05]), [0.4, -0.4, 0.0])

    def test_adaptive_threshold_clamped(self) -> None:
        denoiser = WaveletDenoising()
        denoiser.set_adaptive_threshold(0.01)
        self.assertAlmostEqual(denoiser.threshold, 0.05)
        denoiser.set_adaptive_threshold(0.1)
        self.assertAlmostEqual(denoiser.threshold, 0.2)
        denoiser.set_adaptive_threshold(1.0)
        self.assertAlmostEqual(denoiser.threshold, 0.3)


class TestSignalProcessor(unittest.TestCase):
    """Tests for the SignalProcessor chain."""

    def test_disabled_passes_through(self) -> None:
        processor = SignalProcessor(4, enabled=False)
        spectrum = np.ones(4)
        self.assertIs(processor.process_signal(spectrum, np.zeros(8), True, 0.0), spectrum)
        self.assertIsNone(processor.last_denoised_signal)

    def test_silence_trains_then_voice_is_suppressed(self) -> None:
        processor = SignalProcessor(4)
        silent = np.full(4, 0.1)
        self.assertIs(processor.process_signal(silent, np.zeros(8), False, 0.0), silent)
        self.assertTrue(processor.get_status()["spectral_subtraction_ready"])

        voiced = np.full(4, 0.5)
        processed = processor.process_signal(voiced, np.zeros(8), True, 0.0)
        np.testing.assert_allclose(processed, 0.482 * 0.5)

    def test_denoised_signal_is_kept_aside(self) -> None:
        """Wavelet output is exposed but does not change the returned spectrum."""
        processor = SignalProcessor(4)
        spectrum = np.full(4, 0.3)
        out = processor.process_signal(spectrum, np.array([0.5, -0.5]), False, 0.1)
        self.assertIs(out, spectrum)
        np.testing.assert_allclose(processor.last_denoised_signal, [0.3, -0.3])

    def test_reset(self) -> None:
        processor = SignalProcessor(4)
        processor.process_signal(np.ones(4), np.ones(4), False, 0.0)
        processor.reset()
        self.assertFalse(processor.get_status()["spectral_subtraction_ready"])
        self.assertIsNone(processor.last_denoised_signal)


if __name__ == "__main__":
    unittest.main()
