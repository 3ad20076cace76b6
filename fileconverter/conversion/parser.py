"""
FFmpeg diagnostic output parsing.

FFmpeg writes everything interesting to stderr: the input's duration once,
near the top, then a "-stats" progress line every half second, and free-form
error text when something goes wrong. classify_line() turns one line into a
tagged result; OutputParser keeps the per-job duration/progress state.
"""

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Iterator, Optional, TextIO, Union

logger = logging.getLogger(__name__)


DURATION_PATTERN = re.compile(
    r"Duration:\s*(\d\d):(\d\d):(\d\d)\.(\d\d),.*bitrate:\s*(\d+) kb/s"
)
PROGRESS_PATTERN = re.compile(
    r"size=\s*(\d+)kB\s+time=(\d\d):(\d\d):(\d\d).(\d\d)\s+bitrate=\s*(\d+\.\d)kbits/s"
)

# Any of these in an unmatched line means the conversion failed
FAILURE_MARKERS = (
    "Exiting.",
    "Error",
    "Unsupported dimensions",
    "No such file or directory",
)


@dataclass(frozen=True)
class DurationLine:
    """Total duration of the input, announced once."""
    line: str
    duration: timedelta
    bitrate: float


@dataclass(frozen=True)
class ProgressLine:
    line: str
    size_kb: int
    elapsed: timedelta
    bitrate: float


@dataclass(frozen=True)
class FailureLine:
    line: str

    @property
    def message(self) -> str:
        return self.line


@dataclass(frozen=True)
class InfoLine:
    line: str


ParsedLine = Union[DurationLine, ProgressLine, FailureLine, InfoLine]


def _timestamp(hours: str, minutes: str, seconds: str, centiseconds: str) -> timedelta:
    """HH:MM:SS.cc with cc in hundredths of a second."""
    return timedelta(
        hours=int(hours),
        minutes=int(minutes),
        seconds=int(seconds),
        milliseconds=int(centiseconds) * 10,
    )


def _parse_bitrate(value: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug(f"Unparsable bitrate {value!r}, using 0")
        return 0.0


def classify_line(line: str) -> ParsedLine:
    """
    Classify one line of FFmpeg output.

    Checked in order: duration announcement, progress, failure markers.
    Anything else is informational.
    """
    match = DURATION_PATTERN.search(line)
    if match:
        hours, minutes, seconds, centiseconds, bitrate = match.groups()
        return DurationLine(
            line=line,
            duration=_timestamp(hours, minutes, seconds, centiseconds),
            bitrate=_parse_bitrate(bitrate),
        )

    match = PROGRESS_PATTERN.search(line)
    if match:
        size, hours, minutes, seconds, centiseconds, bitrate = match.groups()
        return ProgressLine(
            line=line,
            size_kb=int(size),
            elapsed=_timestamp(hours, minutes, seconds, centiseconds),
            bitrate=_parse_bitrate(bitrate),
        )

    if any(marker in line for marker in FAILURE_MARKERS):
        return FailureLine(line=line)

    return InfoLine(line=line)


def compute_progress(elapsed: timedelta, total: Optional[timedelta]) -> float:
    """Fraction of the input converted; 0 until a non-zero total is known."""
    if total is None or total <= timedelta(0):
        return 0.0
    return min(1.0, max(0.0, elapsed / total))


class OutputParser:
    """
    Per-job parsing state.

    One instance belongs to exactly one ConversionJob; nothing here is shared
    between jobs.
    """

    def __init__(self):
        self.file_duration: Optional[timedelta] = None
        self.converted_duration: timedelta = timedelta(0)
        self.progress: float = 0.0
        self.size_kb: int = 0
        self.bitrate: float = 0.0

    def feed(self, line: str) -> ParsedLine:
        """Classify a line and fold it into the state."""
        parsed = classify_line(line)

        if isinstance(parsed, DurationLine):
            if self.file_duration is None:
                self.file_duration = parsed.duration
                logger.debug(f"Input duration: {parsed.duration} ({parsed.bitrate:.0f} kb/s)")
            else:
                logger.debug(f"Ignoring extra duration announcement: {parsed.duration}")

        elif isinstance(parsed, ProgressLine):
            self.converted_duration = parsed.elapsed
            self.size_kb = parsed.size_kb
            self.bitrate = parsed.bitrate
            self.progress = compute_progress(parsed.elapsed, self.file_duration)

        return parsed


def parse_lines(lines: Iterable[str]) -> OutputParser:
    """Replay a sequence of lines through a fresh parser."""
    parser = OutputParser()
    for line in lines:
        parser.feed(line)
    return parser


def iter_lines(stream: TextIO) -> Iterator[str]:
    """
    Lazily yield lines from a text stream until end-of-stream.

    Line terminators are stripped. The stream must be opened with universal
    newlines so that FFmpeg's carriage-return progress updates become lines.
    """
    for line in stream:
        line = line.rstrip("\r\n")
        if line:
            yield line
