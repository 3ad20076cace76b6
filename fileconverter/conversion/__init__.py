"""
FFmpeg conversion core: quality mapping, argument building, output parsing
and job supervision.
"""

from .errors import (
    ConversionError,
    ConfigurationError,
    InvalidPresetError,
    MissingSettingError,
    QualityMappingError,
    UnsupportedFormatError,
    InvalidArgumentsError,
    TranscoderEnvironmentError,
    TranscoderNotFoundError,
    TranscoderLaunchError,
    ConversionFailedError,
    ConversionCancelledError,
)
from .arguments import (
    SCALE_TOLERANCE,
    FormatBuilder,
    Settings,
    build_arguments,
    build_encoder_arguments,
    format_command_line,
    get_format_builder,
    register_format,
    supported_output_types,
)
from .parser import (
    DurationLine,
    ProgressLine,
    FailureLine,
    InfoLine,
    OutputParser,
    classify_line,
    compute_progress,
    iter_lines,
    parse_lines,
)
from .job import ConversionJob, find_ffmpeg, terminate_process

__all__ = [
    # Errors
    "ConversionError",
    "ConfigurationError",
    "InvalidPresetError",
    "MissingSettingError",
    "QualityMappingError",
    "UnsupportedFormatError",
    "InvalidArgumentsError",
    "TranscoderEnvironmentError",
    "TranscoderNotFoundError",
    "TranscoderLaunchError",
    "ConversionFailedError",
    "ConversionCancelledError",
    # Arguments
    "SCALE_TOLERANCE",
    "FormatBuilder",
    "Settings",
    "build_arguments",
    "build_encoder_arguments",
    "format_command_line",
    "get_format_builder",
    "register_format",
    "supported_output_types",
    # Parser
    "DurationLine",
    "ProgressLine",
    "FailureLine",
    "InfoLine",
    "OutputParser",
    "classify_line",
    "compute_progress",
    "iter_lines",
    "parse_lines",
    # Jobs
    "ConversionJob",
    "find_ffmpeg",
    "terminate_process",
]
