"""Tests for audio conversion helpers and the spectrum analyser."""

from __future__ import annotations

import io
import unittest
import wave

import numpy as np

from smart_transcriber.core.audio_processor import AudioProcessor
from smart_transcriber.models.settings import Settings
from smart_transcriber.utils import audio_utils
from smart_transcriber.utils.error_handling import CaptureError


class TestLevelConversions(unittest.TestCase):
    """Tests for dB / linear helpers."""

    def test_linear_to_db(self) -> None:
        self.assertAlmostEqual(audio_utils.linear_to_db(0.1), -20.0)
        self.assertAlmostEqual(audio_utils.linear_to_db(0.0), -120.0)
        self.assertAlmostEqual(audio_utils.linear_to_db(2.0), 0.0)

    def test_format_db(self) -> None:
        self.assertEqual(audio_utils.format_db(-40), "-40.0dB")

    def test_level_meter(self) -> None:
        self.assertEqual(audio_utils.level_meter(100), "[####################] 0.0dB")
        self.assertEqual(audio_utils.level_meter(10), "[################----] -20.0dB")
        self.assertEqual(audio_utils.level_meter(0), "[--------------------] -120.0dB")


class TestPcmHelpers(unittest.TestCase):
    """Tests for PCM and WAV helpers."""

    def test_wav_container(self) -> None:
        pcm = b"\x10\x00" * 100
        wav = audio_utils.pcm_to_wav_bytes(pcm, 16000)
        self.assertEqual(len(wav), 44 + len(pcm))
        with wave.open(io.BytesIO(wav), "rb") as wf:
            self.assertEqual(wf.getframerate(), 16000)
            self.assertEqual(wf.readframes(100), pcm)

    def test_pcm_to_float_scale(self) -> None:
        samples = audio_utils.pcm_to_float(np.array([0, 16384, -32768], dtype=np.int16).tobytes())
        np.testing.assert_allclose(samples, [0.0, 0.5, -1.0])

    def test_normalize_silence_is_unchanged(self) -> None:
        silence = np.zeros(10)
        self.assertIs(audio_utils.normalize_audio(silence), silence)


class FailingPyAudio:
    def open(self, **kwargs):
        raise OSError("Invalid input device")

    def terminate(self) -> None:
        pass


class TestAudioProcessor(unittest.TestCase):
    """Tests for AudioProcessor analysis and device fallback."""

    def setUp(self) -> None:
        self.settings = Settings()

    def test_analyze_shapes_and_range(self) -> None:
        processor = AudioProcessor(self.settings)
        t = np.arange(441) / 44100
        frame = processor.analyze(0.5 * np.sin(2 * np.pi * 1000 * t))
        self.assertEqual(frame.frequency_magnitudes.shape, (128,))
        self.assertEqual(frame.time_samples.shape, (256,))
        self.assertGreaterEqual(frame.frequency_magnitudes.min(), 0.0)
        self.assertLessEqual(frame.frequency_magnitudes.max(), 1.0)
        # 1 kHz lands in bin ~6 at 44.1 kHz / 256
        self.assertEqual(int(np.argmax(frame.frequency_magnitudes)), 6)

    def test_silence_analyses_to_zero(self) -> None:
        processor = AudioProcessor(self.settings)
        frame = processor.analyze(np.zeros(441))
        self.assertEqual(float(frame.frequency_magnitudes.max()), 0.0)

    def test_capture_error_when_no_device_opens(self) -> None:
        self.settings.input_device_index = 4
        processor = AudioProcessor(self.settings, pyaudio_factory=FailingPyAudio)
        with self.assertRaises(CaptureError):
            processor.start_stream()
        self.assertIsNone(processor.stream)

    def test_preprocess_keeps_length(self) -> None:
        processor = AudioProcessor(self.settings)
        pcm = (np.sin(np.arange(4410) / 10) * 8000).astype(np.int16).tobytes()
        self.assertEqual(len(processor.preprocess_audio(pcm)), len(pcm))


if __name__ == "__main__":
    unittest.main()
