"""
Exception taxonomy for conversion jobs.

Every fatal condition of a job is raised as a ConversionError subclass
carrying the human-readable message that is also recorded on the job:
- Configuration errors are detected before the subprocess is launched
- Environment errors mean FFmpeg is missing or could not be started
- Runtime errors come from FFmpeg's own diagnostic output
"""

from typing import Optional


REINSTALL_HINT = "You should try to reinstall the application."


class ConversionError(Exception):
    """Base class for every error a conversion job can surface."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# === Configuration errors ===

class ConfigurationError(ConversionError):
    """Invalid request, preset or settings; never retried."""


class InvalidPresetError(ConfigurationError):
    """The conversion request itself is missing or malformed."""


class MissingSettingError(ConfigurationError):
    """A setting required by the output format is absent."""

    def __init__(self, key: str, output_type: Optional[str] = None):
        if output_type:
            message = f"Missing setting '{key}' required for {output_type} output."
        else:
            message = f"Missing setting '{key}'."
        super().__init__(message)
        self.key = key


class QualityMappingError(ConfigurationError, ValueError):
    """A quality knob cannot be mapped to a valid encoder parameter."""


class UnsupportedFormatError(ConfigurationError, NotImplementedError):
    """No argument builder is registered for the requested output type."""

    def __init__(self, output_type: str):
        super().__init__(f"Converter not implemented for output file type {output_type}")
        self.output_type = output_type


class InvalidArgumentsError(ConfigurationError):
    """Argument building produced nothing usable."""


# === Environment errors ===

class TranscoderEnvironmentError(ConversionError):
    """FFmpeg is unavailable on this machine."""


class TranscoderNotFoundError(TranscoderEnvironmentError):
    def __init__(self, path: str):
        super().__init__(f"Can't find ffmpeg executable. {REINSTALL_HINT}")
        self.path = path


class TranscoderLaunchError(TranscoderEnvironmentError):
    """The FFmpeg process failed to start or its output could not be read."""


# === Runtime errors ===

class ConversionFailedError(ConversionError):
    """FFmpeg reported a failure; the message is the offending line."""


class ConversionCancelledError(ConversionError):
    def __init__(self, message: str = "Conversion cancelled."):
        super().__init__(message)
