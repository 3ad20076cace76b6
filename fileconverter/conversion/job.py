"""
Conversion job supervision.

A ConversionJob owns one FFmpeg run from start to finish:

    NotStarted -> Initializing -> Running -> Succeeded
                       |             |
                       +--> Failed <-+

initialize() validates the request, locates FFmpeg and builds the argument
list. convert() launches the process, drains its stderr line by line through
an OutputParser and waits for exit. Both block the calling thread; run one
job per thread to convert several files at once.
"""

import logging
import os
import shutil
import subprocess
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from ..config import TranscoderConfig, get_config
from ..models import ConversionRequest, JobState
from .arguments import build_arguments, format_command_line
from .errors import (
    ConfigurationError, ConversionCancelledError, ConversionFailedError,
    InvalidPresetError, REINSTALL_HINT, TranscoderLaunchError,
    TranscoderNotFoundError
)
from .parser import FailureLine, OutputParser, ProgressLine, iter_lines

logger = logging.getLogger(__name__)

# FFmpeg's own output goes to its own logger so it can be filtered separately
ffmpeg_logger = logging.getLogger("fileconverter.ffmpeg")

LAUNCH_FAILED_MESSAGE = "Failed to launch FFMPEG process."
READ_FAILED_MESSAGE = "Failed to read FFMPEG output."
CANCELLED_MESSAGE = "Conversion cancelled."

# Seconds to wait for FFmpeg to exit after SIGTERM before killing it
TERMINATE_TIMEOUT = 5.0


def find_ffmpeg(config: TranscoderConfig) -> str:
    """
    Resolve the FFmpeg executable path.

    An explicit path is used as is. "auto" prefers the executable bundled in
    the application directory and falls back to PATH; when neither exists the
    bundled location is returned so the existence check reports it.
    """
    if config.ffmpeg_path != "auto":
        return config.ffmpeg_path

    bundled = config.bundled_executable
    if bundled.is_file():
        return str(bundled)

    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg:
        return ffmpeg

    return str(bundled)


def terminate_process(process: subprocess.Popen, timeout: float = TERMINATE_TIMEOUT) -> None:
    """Terminate FFmpeg, escalating to kill if it does not exit in time."""
    if process.poll() is not None:
        return

    try:
        process.terminate()
        process.wait(timeout=timeout)
        logger.debug("FFmpeg terminated")
        return
    except subprocess.TimeoutExpired:
        pass
    except (ProcessLookupError, OSError) as e:
        logger.debug(f"Terminate failed: {e}")

    try:
        process.kill()
        logger.warning("FFmpeg killed forcefully")
    except (ProcessLookupError, OSError) as e:
        logger.debug(f"Kill failed: {e}")


class ConversionJob:
    """Converts one file with FFmpeg and tracks its progress."""

    def __init__(
        self,
        request: Optional[ConversionRequest],
        config: Optional[TranscoderConfig] = None,
        progress_callback: Optional[Callable[[float], None]] = None,
    ):
        self.request = request
        self.config = config or get_config().transcoder
        self.progress_callback = progress_callback

        self.error_message: Optional[str] = None
        self.return_code: Optional[int] = None
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None

        self._state = JobState.NOT_STARTED
        self._progress = 0.0
        self._parser = OutputParser()
        self._executable: Optional[str] = None
        self._arguments: Tuple[str, ...] = ()
        self._process: Optional[subprocess.Popen] = None
        self._cancelled = threading.Event()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def progress(self) -> float:
        """Fraction converted in [0, 1]; frozen once the job has finished."""
        return self._progress

    @property
    def arguments(self) -> Tuple[str, ...]:
        return self._arguments

    @property
    def executable_path(self) -> Optional[str]:
        return self._executable

    @property
    def file_duration(self) -> Optional[timedelta]:
        return self._parser.file_duration

    @property
    def converted_duration(self) -> timedelta:
        return self._parser.converted_duration

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def command_line(self) -> str:
        return format_command_line(self._executable or "ffmpeg", list(self._arguments))

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _set_state(self, state: JobState) -> None:
        with self._lock:
            if self._state.is_terminal:
                return
            logger.debug(f"Job state {self._state.value} -> {state.value}")
            self._state = state
            if state.is_terminal:
                self.completed_at = datetime.now()

    def conversion_failed(self, message: str) -> None:
        """Record the first failure; later ones are ignored."""
        with self._lock:
            if self._state.is_terminal:
                return
            self.error_message = message
            logger.error(f"Conversion failed: {message}")
            self._set_state(JobState.FAILED)

    def _update_progress(self, progress: float) -> None:
        self._progress = progress
        if self.progress_callback:
            try:
                self.progress_callback(progress)
            except Exception as e:
                logger.warning(f"Progress callback error: {e}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Initialize and convert; raises a ConversionError on any failure."""
        self.initialize()
        self.convert()

    def initialize(self) -> None:
        if self._cancelled.is_set():
            raise ConversionCancelledError(self.error_message or CANCELLED_MESSAGE)
        if self._state != JobState.NOT_STARTED:
            raise RuntimeError(f"Conversion job already started ({self._state.value})")

        self._set_state(JobState.INITIALIZING)

        if self.request is None:
            error = InvalidPresetError("The conversion preset must be valid.")
            self.conversion_failed(error.message)
            raise error

        executable = find_ffmpeg(self.config)
        if not os.path.isfile(executable):
            error = TranscoderNotFoundError(executable)
            self.conversion_failed(error.message)
            logger.error(f"Can't find ffmpeg executable ({executable}). Try to reinstall the application.")
            raise error
        self._executable = executable

        try:
            arguments = build_arguments(self.request)
        except ConfigurationError as e:
            self.conversion_failed(e.message)
            raise

        self._arguments = tuple(arguments)

    def convert(self) -> None:
        if self._cancelled.is_set():
            raise ConversionCancelledError(self.error_message or CANCELLED_MESSAGE)
        if self._state != JobState.INITIALIZING or not self._arguments:
            raise RuntimeError("Conversion job must be initialized before converting")

        logger.info(f"Execute command: {self.command_line()}")

        with self._lock:
            if self._cancelled.is_set():
                raise ConversionCancelledError(self.error_message or CANCELLED_MESSAGE)
            try:
                process = subprocess.Popen(
                    [self._executable, *self._arguments],
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                )
            except (OSError, ValueError) as e:
                self.conversion_failed(LAUNCH_FAILED_MESSAGE)
                raise TranscoderLaunchError(f"{LAUNCH_FAILED_MESSAGE} {REINSTALL_HINT}") from e

            self._process = process
            self.started_at = datetime.now()
            self._set_state(JobState.RUNNING)

        try:
            with process:
                try:
                    for line in iter_lines(process.stderr):
                        self._handle_line(line)
                    self.return_code = process.wait()
                except OSError as e:
                    self.conversion_failed(READ_FAILED_MESSAGE)
                    terminate_process(process)
                    raise TranscoderLaunchError(READ_FAILED_MESSAGE) from e
        finally:
            with self._lock:
                self._process = None

        self._finish()

    def _handle_line(self, line: str) -> None:
        ffmpeg_logger.debug(f"ffmpeg output: {line}")

        parsed = self._parser.feed(line)

        # Lines after a failure are drained so FFmpeg never blocks on a full pipe
        if self._state != JobState.RUNNING:
            return

        if isinstance(parsed, FailureLine):
            self.conversion_failed(parsed.message)
        elif isinstance(parsed, ProgressLine):
            self._update_progress(self._parser.progress)

    def _finish(self) -> None:
        with self._lock:
            if self._cancelled.is_set():
                raise ConversionCancelledError(self.error_message or CANCELLED_MESSAGE)

            if self._state == JobState.FAILED:
                raise ConversionFailedError(self.error_message or "Conversion failed.")

            # Killed by a signal: its output ended early, same as a broken pipe
            if self.return_code is not None and self.return_code < 0:
                self.conversion_failed(READ_FAILED_MESSAGE)
                raise TranscoderLaunchError(
                    f"{READ_FAILED_MESSAGE} FFmpeg was terminated by signal {-self.return_code}."
                )

            if self.return_code:
                logger.warning(f"FFmpeg exited with code {self.return_code} without reporting an error")

            self._set_state(JobState.SUCCEEDED)

        self._update_progress(1.0)
        logger.info(f"Conversion succeeded: {self.request.output_path}")

    def cancel(self) -> bool:
        """
        Request cancellation from any thread.

        Returns False if the job had already finished. A running FFmpeg is
        terminated; run() then raises ConversionCancelledError.
        """
        with self._lock:
            if self._state.is_terminal:
                return False
            self._cancelled.set()
            self.conversion_failed(CANCELLED_MESSAGE)
            process = self._process

        if process is not None:
            logger.info("Cancellation requested, terminating FFmpeg")
            terminate_process(process)
        return True
