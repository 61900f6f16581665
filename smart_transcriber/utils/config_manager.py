"""
Configuration management for the smart transcriber.
"""

import os
import json
import logging
from smart_transcriber.models.settings import Settings, LANGUAGE_CODES
from smart_transcriber.utils.error_handling import ConfigurationError

API_KEY_ENV_VAR = "OPENAI_API_KEY"


class ConfigManager:
    """Manages application configuration and settings."""

    def __init__(self, config_dir=None):
        """Initialize the configuration manager."""
        self.logger = logging.getLogger(__name__)
        self.config_dir = config_dir or os.path.join(os.path.expanduser("~"), ".smart_transcriber")
        os.makedirs(self.config_dir, exist_ok=True)
        self.settings_file = os.path.join(self.config_dir, "settings.json")

    def create_default_settings(self):
        """Create default settings."""
        return Settings()

    def load_settings(self):
        """Load settings from file."""
        settings = self.create_default_settings()

        try:
            if os.path.exists(self.settings_file):
                with open(self.settings_file, 'r', encoding='utf-8') as f:
                    settings_dict = json.load(f)
                    settings.update(settings_dict)
                    self.logger.info("Settings loaded from file")
            else:
                self.logger.info("No settings file found, using defaults")
        except (OSError, ValueError) as e:
            self.logger.error(f"Error loading settings: {str(e)}")

        # Fall back to the environment for the API key
        if not settings.openai_api_key:
            settings.openai_api_key = os.environ.get(API_KEY_ENV_VAR, "")

        settings = self.validate_settings(settings)

        return settings

    def validate_settings(self, settings):
        """Validate settings and ensure they're within acceptable ranges."""
        # Transcription service
        settings.backend = self.validate_option(settings.backend, ["openai", "local"], "openai")
        settings.whisper_model = self.validate_option(settings.whisper_model, ["whisper-1"], "whisper-1")
        settings.request_timeout = self.validate_range(settings.request_timeout, 5, 300, 60)
        if not isinstance(settings.openai_api_key, str):
            settings.openai_api_key = ""
        if not isinstance(settings.api_base_url, str) or not settings.api_base_url:
            settings.api_base_url = "https://api.openai.com/v1"

        # Audio settings
        settings.sample_rate = self.validate_option(settings.sample_rate,
                                            [16000, 22050, 44100, 48000],
                                            44100)
        settings.fft_size = self.validate_option(settings.fft_size, [128, 256, 512, 1024, 2048], 256)
        settings.frame_period_ms = self.validate_range(settings.frame_period_ms, 5, 100, 10)
        if not (isinstance(settings.input_device_index, int) or settings.input_device_index is None):
            self.logger.warning(f"Invalid input_device_index '{settings.input_device_index}' found in settings, resetting to default (None).")
            settings.input_device_index = None
        settings.use_signal_processing = self.validate_bool(settings.use_signal_processing, True)
        settings.preprocess_audio = self.validate_bool(settings.preprocess_audio, True)

        # Segmentation
        settings.segment_duration = self.validate_range(settings.segment_duration, 3, 30, 8)
        settings.pause_threshold = self.validate_range(settings.pause_threshold, 10, 3000, 1000)

        # Transcription options
        settings.language = self.validate_option(settings.language, LANGUAGE_CODES, "auto")
        settings.enable_translation = self.validate_bool(settings.enable_translation, False)
        settings.stale_segment_timeout = self.validate_range(settings.stale_segment_timeout, 5, 600, 30)

        # Local model settings
        settings.local_model_size = self.validate_option(settings.local_model_size,
                                            ["tiny", "base", "small", "medium", "large"],
                                            "small")
        settings.device = self.validate_option(settings.device, ["cpu", "cuda"], "cpu")
        settings.debug_mode = self.validate_bool(settings.debug_mode, False)

        return settings

    def require_credentials(self, settings):
        """
        Fail fast when the selected backend cannot run.

        Raises:
            ConfigurationError: If the OpenAI backend is selected without an API key.
        """
        if settings.backend == "openai" and not settings.openai_api_key:
            raise ConfigurationError(
                f"OpenAI API key is not configured. Set it in {self.settings_file} "
                f"or the {API_KEY_ENV_VAR} environment variable."
            )

    def validate_range(self, value, min_val, max_val, default):
        """Ensure a value is within a specified range."""
        if value is None or isinstance(value, bool) or not isinstance(value, (int, float)) or value < min_val or value > max_val:
            return default
        return value

    def validate_option(self, value, options, default):
        """Ensure a value is one of the allowed options."""
        if value not in options:
            return default
        return value

    def validate_bool(self, value, default):
        """Ensure a value is a real boolean."""
        if not isinstance(value, bool):
            return default
        return value

    def save_settings(self, settings):
        """Save settings to file."""
        try:
            settings_dict = settings.to_dict()

            with open(self.settings_file, 'w', encoding='utf-8') as f:
                json.dump(settings_dict, f, indent=2)

            self.logger.info("Settings saved to file")
            return True
        except OSError as e:
            self.logger.error(f"Error saving settings: {str(e)}")
            return False
