"""
Transcript text utilities for the smart transcriber.
"""

import re
import logging
from datetime import datetime
import typing as t

logger = logging.getLogger(__name__)

TIMESTAMPED_LINE = re.compile(r'^\[(?P<timestamp>[^\]]+)\] (?P<text>.*)$')
ESCAPED_CHAR = re.compile(r'\\(.)')

_ESCAPES = {'\\': '\\\\', '\n': '\\n', '\r': '\\r'}
_UNESCAPES = {v[1]: k for k, v in _ESCAPES.items()}


def escape_line(text):
    """
    Fold transcription text onto one export line.

    Backslashes and line breaks are escaped so that ``unescape_line``
    restores the text exactly. Spacing is left as it is.
    """
    return ''.join(_ESCAPES.get(ch, ch) for ch in text or '')


def unescape_line(line):
    """Reverse ``escape_line``. Unknown escapes are kept as written."""
    return ESCAPED_CHAR.sub(lambda m: _UNESCAPES.get(m.group(1), m.group(0)), line)


def format_transcript_line(text, timestamp: t.Optional[datetime] = None):
    """Format one exported line, optionally prefixed with ``[ISO timestamp]``."""
    line = escape_line(text)
    if timestamp is None:
        return line
    return f"[{timestamp.isoformat()}] {line}"


def parse_transcript(content) -> t.List[t.Tuple[t.Optional[datetime], str]]:
    """
    Parse a text export back into ``(timestamp, text)`` pairs.

    Lines without a recognizable timestamp prefix yield ``(None, text)``.
    Blank lines are skipped. Escaped line breaks are restored.
    """
    entries = []
    for line in content.split("\n"):
        line = line.rstrip("\r")
        if not line.strip():
            continue
        match = TIMESTAMPED_LINE.match(line)
        if match:
            try:
                timestamp = datetime.fromisoformat(match.group("timestamp"))
            except ValueError:
                logger.debug(f"Unparseable timestamp in transcript line: {line!r}")
            else:
                entries.append((timestamp, unescape_line(match.group("text"))))
                continue
        entries.append((None, unescape_line(line)))
    return entries
