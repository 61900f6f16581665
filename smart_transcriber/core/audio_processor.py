"""
Audio capture and analysis for the smart transcriber.
Reads the microphone with PyAudio and turns it into spectrum frames shaped like
a browser AnalyserNode's output (Blackman window, smoothed, dB-normalized).
"""

import os
import logging
import numpy as np
import typing as t

import smart_transcriber.utils.audio_utils as audio_utils
from smart_transcriber.models.detection import SpectrumFrame
from smart_transcriber.utils.error_handling import CaptureError


class AudioProcessor:
    """Handles audio capture, spectrum analysis and segment preprocessing."""
    # Audio format constants
    AUDIO_FORMAT = 8  # pyaudio.paInt16
    AUDIO_CHANNELS = 1

    # Analyser parameters
    SMOOTHING_TIME_CONSTANT = 0.8
    MIN_DECIBELS = -100.0
    MAX_DECIBELS = -30.0

    # Filter parameters
    DEFAULT_HIGHPASS_CUTOFF = 100  # Hz

    def __init__(self, settings, pyaudio_factory=None):
        """Initialize the audio processor with the given settings."""
        self.logger = logging.getLogger(__name__)
        self.settings = settings
        self._pyaudio_factory = pyaudio_factory
        self.audio = None
        self.stream = None
        self._configure_analyser()

    def _configure_analyser(self):
        fft_size = self.settings.fft_size
        self.fft_size = fft_size
        self.bin_count = fft_size // 2
        self.chunk_size = max(1, int(self.settings.sample_rate * self.settings.frame_period_ms / 1000))
        self.window = np.blackman(fft_size)
        self._window_samples = np.zeros(fft_size, dtype=np.float64)
        self._smoothed = np.zeros(self.bin_count, dtype=np.float64)

    def update_settings(self, settings):
        """Update the settings used by the audio processor."""
        self.settings = settings
        self._configure_analyser()

    def reset_analyser(self):
        """Clear the rolling window and spectral smoothing state."""
        self._window_samples[:] = 0.0
        self._smoothed[:] = 0.0

    def start_stream(self):
        """
        Open the input stream, falling back to the default device.

        Raises:
            CaptureError: If no input stream can be opened
        """
        if self.stream is not None:
            self.stop_stream()
        if self.audio is None:
            self.audio = self._create_pyaudio()

        device_index = self.settings.input_device_index
        self.logger.info(f"Attempting to start audio stream on device index: {device_index}")

        try:
            self.stream = self._open(device_index)
            self.logger.info(f"Audio stream started successfully on device index {device_index}")
            return self.stream
        except (IOError, OSError) as e:
            if device_index is None:
                raise CaptureError(f"Could not open default audio input: {e}") from e
            self.logger.error(f"Error starting audio stream on device index {device_index}: {e}. Falling back to default device.")

        try:
            self.stream = self._open(None)
        except (IOError, OSError) as e_fallback:
            self.logger.error(f"Failed to start audio stream even on default device: {e_fallback}", exc_info=True)
            raise CaptureError(f"Could not open any audio input: {e_fallback}") from e_fallback

        self.settings.input_device_index = None
        self.logger.info("Audio stream started successfully on SYSTEM DEFAULT device.")
        return self.stream

    def _create_pyaudio(self):
        if self._pyaudio_factory is not None:
            return self._pyaudio_factory()
        try:
            import pyaudio
        except ImportError as e:
            raise CaptureError("PyAudio is required for microphone capture. Install with: pip install pyaudio") from e
        return pyaudio.PyAudio()

    def _open(self, device_index):
        return self.audio.open(
            format=self.AUDIO_FORMAT,
            channels=self.AUDIO_CHANNELS,
            rate=self.settings.sample_rate,
            input=True,
            frames_per_buffer=self.chunk_size,
            input_device_index=device_index
        )

    def stop_stream(self):
        """Stop the audio input stream."""
        if self.stream is not None:
            try:
                if self.stream.is_active():
                    self.stream.stop_stream()
                self.stream.close()
            except (IOError, OSError) as e:
                self.logger.error(f"Error stopping stream: {e}")
            finally:
                self.stream = None

    def cleanup(self):
        """Clean up resources."""
        self.logger.info("Cleaning up AudioProcessor resources")
        self.stop_stream()

        if self.audio is not None:
            try:
                self.audio.terminate()
            except Exception as e:
                self.logger.error(f"Error terminating PyAudio: {e}")
            finally:
                self.audio = None

    def analyze(self, samples: np.ndarray) -> SpectrumFrame:
        """
        Push new samples into the rolling window and return the current frame.

        Args:
            samples: float samples in [-1, 1], any length

        Returns:
            SpectrumFrame with ``fft_size / 2`` magnitudes in 0..1 and the
            latest ``fft_size`` time samples
        """
        samples = np.asarray(samples, dtype=np.float64)
        if len(samples) >= self.fft_size:
            self._window_samples[:] = samples[-self.fft_size:]
        elif len(samples) > 0:
            self._window_samples = np.roll(self._window_samples, -len(samples))
            self._window_samples[-len(samples):] = samples

        spectrum = np.fft.rfft(self._window_samples * self.window)[:self.bin_count]
        magnitude = np.abs(spectrum) / self.fft_size
        tau = self.SMOOTHING_TIME_CONSTANT
        self._smoothed = tau * self._smoothed + (1 - tau) * magnitude

        with np.errstate(divide='ignore'):
            decibels = 20 * np.log10(self._smoothed)
        scaled = (decibels - self.MIN_DECIBELS) / (self.MAX_DECIBELS - self.MIN_DECIBELS)
        magnitudes = np.clip(np.nan_to_num(scaled, nan=0.0, neginf=0.0), 0.0, 1.0)

        return SpectrumFrame(frequency_magnitudes=magnitudes, time_samples=self._window_samples.copy())

    def frames(self, termination_event) -> t.Iterator[t.Tuple[SpectrumFrame, bytes]]:
        """
        Yield ``(frame, pcm)`` pairs, one per frame period, until terminated.

        Raises:
            CaptureError: If the stream cannot be opened or read
        """
        self.reset_analyser()
        if self.stream is None:
            self.start_stream()
        try:
            while not termination_event.is_set():
                try:
                    data = self.stream.read(self.chunk_size, exception_on_overflow=False)
                except (IOError, OSError) as e:
                    raise CaptureError(f"Stream read error: {e}") from e
                yield self.analyze(audio_utils.pcm_to_float(data)), data
        finally:
            self.stop_stream()

    def preprocess_audio(self, pcm: bytes) -> bytes:
        """Normalize and high-pass a segment's PCM before it is sent for transcription."""
        audio = audio_utils.pcm_to_float(pcm)
        if audio.size == 0:
            return pcm
        audio = audio_utils.normalize_audio(audio)
        audio = audio_utils.apply_highpass_filter(audio, self.settings.sample_rate, self.DEFAULT_HIGHPASS_CUTOFF)
        return audio_utils.float_to_pcm(audio)

    def save_debug_audio(self, wav_bytes, segment_id):
        """Save an encoded segment to disk for debugging."""
        if not self.settings.debug_mode:
            return

        debug_dir = "debug_audio"
        os.makedirs(debug_dir, exist_ok=True)

        filename = os.path.join(debug_dir, f"{segment_id}.wav")
        with open(filename, 'wb') as f:
            f.write(wav_bytes)
        self.logger.info(f"Saved debug audio to {filename}")
