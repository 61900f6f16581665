"""
Command-line entry point for the smart transcriber.
Records until Ctrl+C, then exports the transcript.
"""
import sys
import time
import logging
import argparse

from smart_transcriber.core.app import SmartTranscriberApp, TranscriberListener
from smart_transcriber.models.settings import LANGUAGE_CODES
from smart_transcriber.utils.audio_utils import get_audio_input_devices, level_meter
from smart_transcriber.utils.config_manager import ConfigManager
from smart_transcriber.utils.error_handling import ConfigurationError, CaptureError
from smart_transcriber.utils.logging_setup import setup_logging

# How long to wait for in-flight transcriptions after recording stops
DRAIN_TIMEOUT = 30.0


class ConsoleListener(TranscriberListener):
    """
    Reports progress on stderr, keeping stdout for the exported transcript.

    Prints finished segments as they arrive and, with ``show_level``, a
    level meter refreshed at most every ``METER_INTERVAL`` seconds.
    """
    METER_INTERVAL = 0.25

    def __init__(self, show_level=False, stream=None, clock=time.monotonic):
        self.show_level = show_level
        self.stream = stream if stream is not None else sys.stderr
        self.clock = clock
        self._last_meter = None

    def on_segment_update(self, segment):
        if not segment.is_processing:
            print(f"[{segment.timestamp:%H:%M:%S}] {segment.text}", file=self.stream, flush=True)

    def on_audio_level(self, level):
        if not self.show_level:
            return
        now = self.clock()
        if self._last_meter is not None and now - self._last_meter < self.METER_INTERVAL:
            return
        self._last_meter = now
        print(f"\r{level_meter(level)}", end="", file=self.stream, flush=True)

    def on_error(self, error):
        print(f"Error: {error}", file=self.stream, flush=True)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="smart-transcriber",
        description="Transcribe speech from the microphone, cutting segments at natural pauses.",
    )
    parser.add_argument("--segment-duration", type=int, help="Seconds of voice before a segment may be cut (3-30)")
    parser.add_argument("--pause-threshold", type=int, help="Silence in ms that ends a ripe segment (10-3000)")
    parser.add_argument("--language", choices=LANGUAGE_CODES, help="Spoken language, or 'auto'")
    parser.add_argument("--translate", action="store_true", help="Translate speech to English")
    parser.add_argument("--backend", choices=["openai", "local"], help="Transcription backend")
    parser.add_argument("--device", type=int, help="Input device index (see --list-devices)")
    parser.add_argument("--list-devices", action="store_true", help="List audio input devices and exit")
    parser.add_argument("--output", "-o", help="Write the transcript to this file instead of stdout")
    parser.add_argument("--format", choices=["text", "json"], default="text", help="Export format")
    parser.add_argument("--timestamps", action="store_true", help="Prefix text lines with timestamps")
    parser.add_argument("--meter", action="store_true", help="Show a live input level meter on stderr")
    parser.add_argument("--debug", action="store_true", help="Verbose logging and saved segment audio")
    return parser


def apply_overrides(settings, args):
    """Copy command-line overrides onto loaded settings."""
    if args.segment_duration is not None:
        settings.segment_duration = args.segment_duration
    if args.pause_threshold is not None:
        settings.pause_threshold = args.pause_threshold
    if args.language is not None:
        settings.language = args.language
    if args.translate:
        settings.enable_translation = True
    if args.backend is not None:
        settings.backend = args.backend
    if args.device is not None:
        settings.input_device_index = args.device
    if args.debug:
        settings.debug_mode = True
    return settings


def wait_for_pending(app, timeout=DRAIN_TIMEOUT):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if app.segment_queue.empty() and app.store.processing_count() == 0:
            return True
        time.sleep(0.2)
    return False


def main(argv=None):
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)
    logger = setup_logging(logging.DEBUG if args.debug else logging.INFO)

    if args.list_devices:
        for name, index in get_audio_input_devices().items():
            print(f"{'default' if index is None else index}\t{name}")
        return 0

    config_manager = ConfigManager()
    settings = config_manager.validate_settings(apply_overrides(config_manager.load_settings(), args))

    app = SmartTranscriberApp(config_manager=config_manager, settings=settings)
    app.add_listener(ConsoleListener(show_level=args.meter))

    try:
        app.initialize()
        app.start_recording()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        app.dispose()
        return 1
    except CaptureError as e:
        logger.error(f"Audio capture error: {e}")
        app.dispose()
        return 1

    logger.info("Listening... press Ctrl+C to stop")
    try:
        while app.is_recording:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Stopping")

    app.stop_recording()
    if not wait_for_pending(app):
        logger.warning("Some transcriptions did not finish in time and are left out of the export")

    transcript = app.export_transcript(format=args.format, include_timestamps=args.timestamps)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(transcript + "\n")
        logger.info(f"Transcript written to {args.output}")
    else:
        print(transcript)

    app.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
