"""
Settings data model for the smart transcriber.
"""
import typing as t

# Languages accepted by the transcription service ("auto" lets it detect)
LANGUAGE_CODES = ["auto", "en", "zh", "ja", "ko", "es", "fr", "de", "it", "pt", "ru", "ar"]


class Settings:
    """Stores application settings."""

    def __init__(self):
        """Initialize with default settings."""
        # Transcription service
        self.openai_api_key = ""
        self.whisper_model = "whisper-1"
        self.api_base_url = "https://api.openai.com/v1"
        self.request_timeout = 60
        self.backend = "openai"

        # Local model parameters (backend == "local")
        self.local_model_size = "small"
        self.device = "cpu"

        # Audio parameters
        self.sample_rate = 44100
        self.fft_size = 256
        self.frame_period_ms = 10
        self.input_device_index: t.Optional[int] = None
        self.use_signal_processing = True
        self.preprocess_audio = True

        # Smart segmentation
        self.segment_duration = 8  # seconds of voice before a segment is ripe
        self.pause_threshold = 1000  # ms of silence before a ripe segment is sent

        # Transcription options
        self.language = "auto"
        self.enable_translation = False
        self.stale_segment_timeout = 30

        # Debug mode
        self.debug_mode = False

    def update(self, settings_dict):
        """Update settings from a dictionary."""
        if not settings_dict:
            return

        if "api" in settings_dict:
            api = settings_dict["api"]
            self.openai_api_key = api.get("openai_api_key", self.openai_api_key)
            self.whisper_model = api.get("whisper_model", self.whisper_model)
            self.api_base_url = api.get("base_url", self.api_base_url)
            self.request_timeout = api.get("request_timeout", self.request_timeout)
            self.backend = api.get("backend", self.backend)

        if "processing" in settings_dict:
            self.local_model_size = settings_dict["processing"].get("model_size", self.local_model_size)
            self.device = settings_dict["processing"].get("device", self.device)

        if "audio" in settings_dict:
            audio = settings_dict["audio"]
            self.sample_rate = audio.get("sample_rate", self.sample_rate)
            self.fft_size = audio.get("fft_size", self.fft_size)
            self.frame_period_ms = audio.get("frame_period_ms", self.frame_period_ms)
            self.use_signal_processing = audio.get("use_signal_processing", self.use_signal_processing)
            self.preprocess_audio = audio.get("preprocess_audio", self.preprocess_audio)
            # Load the input device index, ensuring it's an int or None
            loaded_index = audio.get("input_device_index", self.input_device_index)
            if isinstance(loaded_index, int) or loaded_index is None:
                self.input_device_index = loaded_index
            else:
                try:
                    self.input_device_index = int(loaded_index)
                except (ValueError, TypeError):
                    self.input_device_index = None

        if "segmentation" in settings_dict:
            self.segment_duration = settings_dict["segmentation"].get("segment_duration", self.segment_duration)
            self.pause_threshold = settings_dict["segmentation"].get("pause_threshold", self.pause_threshold)

        if "transcription" in settings_dict:
            transcription = settings_dict["transcription"]
            self.language = transcription.get("language", self.language)
            self.enable_translation = transcription.get("enable_translation", self.enable_translation)
            self.stale_segment_timeout = transcription.get("stale_segment_timeout", self.stale_segment_timeout)

        if "general" in settings_dict:
            self.debug_mode = settings_dict["general"].get("debug_mode", self.debug_mode)

    def to_dict(self):
        """Convert settings to a dictionary."""
        return {
            "api": {
                "openai_api_key": self.openai_api_key,
                "whisper_model": self.whisper_model,
                "base_url": self.api_base_url,
                "request_timeout": self.request_timeout,
                "backend": self.backend
            },
            "processing": {
                "model_size": self.local_model_size,
                "device": self.device
            },
            "audio": {
                "sample_rate": self.sample_rate,
                "fft_size": self.fft_size,
                "frame_period_ms": self.frame_period_ms,
                "input_device_index": self.input_device_index,
                "use_signal_processing": self.use_signal_processing,
                "preprocess_audio": self.preprocess_audio
            },
            "segmentation": {
                "segment_duration": self.segment_duration,
                "pause_threshold": self.pause_threshold
            },
            "transcription": {
                "language": self.language,
                "enable_translation": self.enable_translation,
                "stale_segment_timeout": self.stale_segment_timeout
            },
            "general": {
                "debug_mode": self.debug_mode
            }
        }
