"""
Audio utility functions for the smart transcriber.
"""

import io
import wave
import numpy as np
from scipy import signal
import logging
import typing as t


logger = logging.getLogger(__name__)

PCM_SAMPLE_WIDTH = 2  # bytes per int16 sample
PCM_MAX_VALUE = 32768.0

MIN_DB = -100.0
MIN_LINEAR = 0.000001


def normalize_audio(audio: np.ndarray) -> np.ndarray:
    """
    Normalize audio to have a maximum amplitude of 0.9.

    Args:
        audio: numpy array of audio data

    Returns:
        Normalized audio as float32 numpy array
    """
    if audio.size and np.abs(audio).max() > 0:
        return audio / np.abs(audio).max() * 0.9
    return audio

def apply_highpass_filter(audio: np.ndarray, sample_rate: int, cutoff: int = 100) -> np.ndarray:
    """
    Apply a high-pass filter to remove low-frequency rumble.

    Args:
        audio: numpy array of audio data
        sample_rate: audio sample rate in Hz
        cutoff: cutoff frequency in Hz

    Returns:
        Filtered audio as numpy array
    """
    sos = signal.butter(2, cutoff, 'hp', fs=sample_rate, output='sos')
    return signal.sosfilt(sos, audio)

def pcm_to_float(pcm: bytes) -> np.ndarray:
    """Convert little-endian int16 PCM bytes into float32 samples in [-1, 1]."""
    return np.frombuffer(pcm, dtype=np.int16).astype(np.float32) / PCM_MAX_VALUE

def float_to_pcm(audio: np.ndarray) -> bytes:
    """Convert float samples in [-1, 1] back into int16 PCM bytes."""
    clipped = np.clip(audio, -1.0, 1.0)
    return (clipped * (PCM_MAX_VALUE - 1)).astype(np.int16).tobytes()

def pcm_to_wav_bytes(pcm: bytes, sample_rate: int, channels: int = 1) -> bytes:
    """
    Wrap raw int16 PCM in a WAV container.

    Args:
        pcm: raw little-endian int16 samples
        sample_rate: sample rate in Hz
        channels: number of interleaved channels

    Returns:
        The complete WAV file as bytes
    """
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(PCM_SAMPLE_WIDTH)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buffer.getvalue()

def linear_to_db(linear: float) -> float:
    """Convert a linear value in 0..1 to decibels, never returning -inf."""
    clamped = max(MIN_LINEAR, min(1.0, linear))
    return float(20 * np.log10(clamped))

def format_db(db: float) -> str:
    """Format a decibel value for display, e.g. ``-40.0dB``."""
    return f"{db:.1f}dB"

def level_meter(level: float, width: int = 20) -> str:
    """Render a 0..100 audio level as a text bar with its dB value."""
    db = linear_to_db(level / 100)
    filled = int(round(width * (max(db, MIN_DB) - MIN_DB) / -MIN_DB))
    return f"[{'#' * filled}{'-' * (width - filled)}] {format_db(db)}"

def get_audio_input_devices() -> t.Dict[str, t.Optional[int]]:
    """
    Retrieves a dictionary of available audio input devices.

    Returns:
        A dictionary mapping device names (with host API) to their indices.
        Includes a "System Default" option mapping to None.
        Returns just the default option if PyAudio fails.
    """
    devices = {"System Default": None}
    p = None
    try:
        import pyaudio
        p = pyaudio.PyAudio()
        info = p.get_host_api_info_by_index(0)
        numdevices = info.get('deviceCount')

        logger.info(f"Found {numdevices} audio devices.")

        for i in range(0, numdevices):
            device_info = p.get_device_info_by_index(i)
            if device_info.get('maxInputChannels') > 0:
                device_name = device_info.get('name')
                host_api = p.get_host_api_info_by_index(device_info.get('hostApi')).get('name')
                full_name = f"{device_name} ({host_api})"
                devices[full_name] = i
                logger.debug(f"Found input device: index={i}, name='{full_name}'")
    except Exception as e:
        logger.error(f"Could not enumerate audio devices: {e}", exc_info=True)
        return {"System Default": None}
    finally:
        if p is not None:
            p.terminate()
    return devices
