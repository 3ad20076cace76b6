"""
FFmpeg argument building for each output format.

Each output type registers one pure builder that turns the request settings
into the encoder flags for that format. build_arguments() wraps them into
the full invocation:

    -n -stats -i <input> <encoder flags> <output>
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type

from ..models import (
    ConversionRequest, EncodingMode, OutputType, SettingKey, VideoEncodingSpeed
)
from .errors import (
    InvalidArgumentsError, InvalidPresetError, MissingSettingError,
    QualityMappingError, UnsupportedFormatError
)
from . import quality

logger = logging.getLogger(__name__)

# Scale factors this close to 1.0 do not emit a resize filter
SCALE_TOLERANCE = 0.005

EncoderBuilder = Callable[["Settings"], Optional[List[str]]]


@dataclass
class FormatBuilder:
    """A registered output format."""
    output_type: OutputType
    build: EncoderBuilder
    required_settings: Tuple[SettingKey, ...] = field(default_factory=tuple)


_BUILDERS: Dict[OutputType, FormatBuilder] = {}


def register_format(output_type: OutputType, *required_settings: SettingKey):
    """Decorator registering the encoder argument builder of an output type."""
    def decorator(func: EncoderBuilder) -> EncoderBuilder:
        _BUILDERS[output_type] = FormatBuilder(output_type, func, tuple(required_settings))
        return func
    return decorator


def get_format_builder(output_type: OutputType) -> FormatBuilder:
    builder = _BUILDERS.get(output_type)
    if builder is None:
        name = output_type.name if isinstance(output_type, OutputType) else str(output_type)
        raise UnsupportedFormatError(name)
    return builder


def supported_output_types() -> List[OutputType]:
    """Output types with a registered builder, in declaration order."""
    return [output_type for output_type in OutputType if output_type in _BUILDERS]


class Settings:
    """Typed read access to a request's settings bag."""

    def __init__(self, values: Mapping[Any, Any], output_type: Optional[OutputType] = None):
        self._values: Dict[SettingKey, Any] = {}
        for key, value in values.items():
            try:
                self._values[SettingKey(key)] = value
            except ValueError:
                logger.debug(f"Ignoring unknown setting key: {key!r}")
        self.output_type = output_type

    def __contains__(self, key: SettingKey) -> bool:
        return key in self._values

    def _raw(self, key: SettingKey) -> Any:
        if key not in self._values or self._values[key] is None:
            name = self.output_type.name if self.output_type else None
            raise MissingSettingError(key.value, name)
        return self._values[key]

    def _convert(self, key: SettingKey, kind: Type) -> Any:
        value = self._raw(key)
        try:
            converted = kind(value)
        except (TypeError, ValueError):
            raise QualityMappingError(f"Invalid value for setting '{key.value}': {value!r}")
        if isinstance(converted, float) and not math.isfinite(converted):
            raise QualityMappingError(f"Setting '{key.value}' must be finite, got {value!r}")
        return converted

    def get_int(self, key: SettingKey) -> int:
        value = self._convert(key, float)
        if value != int(value):
            raise QualityMappingError(f"Setting '{key.value}' must be an integer, got {value!r}")
        return int(value)

    def get_float(self, key: SettingKey) -> float:
        return self._convert(key, float)

    def get_encoding_mode(self, key: SettingKey = SettingKey.AUDIO_ENCODING_MODE) -> Optional[EncodingMode]:
        """Returns None for unrecognised modes; callers decide what that means."""
        value = self._raw(key)
        try:
            return EncodingMode(value)
        except ValueError:
            logger.warning(f"Unrecognised encoding mode: {value!r}")
            return None

    def get_speed(self, key: SettingKey = SettingKey.VIDEO_ENCODING_SPEED) -> Any:
        value = self._raw(key)
        try:
            return VideoEncodingSpeed(value)
        except ValueError:
            # Raw preset tokens ("veryfast") are accepted by the mapper
            return value


# =============================================================================
# SHARED PIECES
# =============================================================================

def format_scale_factor(scale: float) -> str:
    return f"{scale:.2f}"


def scale_arguments(scale: float) -> List[str]:
    """Resize filter for image/video outputs, omitted when the factor is ~1.0."""
    if not math.isfinite(scale) or scale <= 0:
        raise QualityMappingError(f"Scale factor must be positive, got {scale}")
    # Rounded so that 0.995 and 1.005 both count as within tolerance
    if round(abs(scale - 1.0), 9) <= SCALE_TOLERANCE:
        return []
    factor = format_scale_factor(scale)
    if float(factor) <= 0:
        raise QualityMappingError(f"Scale factor {scale} is too small, it would render as {factor}")
    return ["-vf", f"scale=iw*{factor}:ih*{factor}"]


def _number(value: float) -> str:
    """Render a quality value without a trailing .0 for whole numbers."""
    if float(value) == int(value):
        return str(int(value))
    return f"{value:g}"


# =============================================================================
# FORMAT BUILDERS
# =============================================================================

@register_format(OutputType.AAC, SettingKey.AUDIO_BITRATE)
def _aac_arguments(settings: Settings) -> List[str]:
    # https://trac.ffmpeg.org/wiki/Encode/AAC
    bitrate = settings.get_int(SettingKey.AUDIO_BITRATE)
    return ["-c:a", "aac", "-q:a", _number(quality.aac_bitrate_to_quality_index(bitrate))]


@register_format(
    OutputType.AVI,
    SettingKey.VIDEO_QUALITY, SettingKey.AUDIO_BITRATE, SettingKey.VIDEO_SCALE
)
def _avi_arguments(settings: Settings) -> List[str]:
    # https://trac.ffmpeg.org/wiki/Encode/MPEG-4
    video_quality = settings.get_int(SettingKey.VIDEO_QUALITY)
    audio_bitrate = settings.get_int(SettingKey.AUDIO_BITRATE)
    scale = settings.get_float(SettingKey.VIDEO_SCALE)

    args = [
        "-c:v", "mpeg4", "-vtag", "xvid",
        "-qscale:v", str(quality.mpeg4_quality_to_qscale(video_quality)),
        "-c:a", "libmp3lame",
        "-qscale:a", str(quality.mp3_vbr_bitrate_to_quality_index(audio_bitrate)),
    ]
    args.extend(scale_arguments(scale))
    return args


@register_format(OutputType.FLAC)
def _flac_arguments(settings: Settings) -> List[str]:
    return ["-compression_level", "12"]


@register_format(OutputType.ICO)
def _ico_arguments(settings: Settings) -> List[str]:
    # FFmpeg picks the ico muxer from the extension, nothing to tune
    return []


@register_format(OutputType.JPG, SettingKey.IMAGE_QUALITY, SettingKey.IMAGE_SCALE)
def _jpg_arguments(settings: Settings) -> List[str]:
    image_quality = settings.get_int(SettingKey.IMAGE_QUALITY)
    scale = settings.get_float(SettingKey.IMAGE_SCALE)

    args = ["-q:v", str(quality.jpg_quality_to_qscale(image_quality))]
    args.extend(scale_arguments(scale))
    return args


@register_format(OutputType.MP3, SettingKey.AUDIO_ENCODING_MODE, SettingKey.AUDIO_BITRATE)
def _mp3_arguments(settings: Settings) -> Optional[List[str]]:
    mode = settings.get_encoding_mode()
    bitrate = settings.get_int(SettingKey.AUDIO_BITRATE)

    if mode == EncodingMode.MP3_VBR:
        return [
            "-codec:a", "libmp3lame",
            "-q:a", str(quality.mp3_vbr_bitrate_to_quality_index(bitrate)),
        ]
    if mode == EncodingMode.MP3_CBR:
        return ["-codec:a", "libmp3lame", "-b:a", f"{quality.mp3_cbr_bitrate(bitrate)}k"]

    return None


@register_format(
    OutputType.MKV,
    SettingKey.VIDEO_QUALITY, SettingKey.VIDEO_ENCODING_SPEED,
    SettingKey.AUDIO_BITRATE, SettingKey.VIDEO_SCALE
)
def _mkv_arguments(settings: Settings) -> List[str]:
    # https://trac.ffmpeg.org/wiki/Encode/H.264
    video_quality = settings.get_int(SettingKey.VIDEO_QUALITY)
    speed = settings.get_speed()
    audio_bitrate = settings.get_int(SettingKey.AUDIO_BITRATE)
    scale = settings.get_float(SettingKey.VIDEO_SCALE)

    args = [
        "-c:v", "libx264",
        "-preset", quality.h264_speed_to_preset(speed),
        "-crf", str(quality.h264_quality_to_crf(video_quality)),
        "-c:a", "aac",
        "-q:a", _number(quality.aac_bitrate_to_quality_index(audio_bitrate)),
    ]
    args.extend(scale_arguments(scale))
    return args


@register_format(OutputType.OGG, SettingKey.AUDIO_BITRATE)
def _ogg_arguments(settings: Settings) -> List[str]:
    bitrate = settings.get_int(SettingKey.AUDIO_BITRATE)
    return ["-codec:a", "libvorbis", "-qscale:a", str(quality.vorbis_bitrate_to_quality_index(bitrate))]


@register_format(OutputType.PNG, SettingKey.IMAGE_SCALE)
def _png_arguments(settings: Settings) -> List[str]:
    scale = settings.get_float(SettingKey.IMAGE_SCALE)
    args = ["-compression_level", "100"]
    args.extend(scale_arguments(scale))
    return args


@register_format(OutputType.WAV, SettingKey.AUDIO_ENCODING_MODE)
def _wav_arguments(settings: Settings) -> Optional[List[str]]:
    mode = settings.get_encoding_mode()
    codec = quality.wav_encoding_to_codec(mode) if mode is not None else None
    if codec is None:
        return None
    return ["-acodec", codec]


# =============================================================================
# ENTRY POINTS
# =============================================================================

def build_encoder_arguments(output_type: OutputType, settings: Mapping[Any, Any]) -> List[str]:
    """Encoder flags for one output type; raises ConfigurationError subclasses."""
    builder = get_format_builder(output_type)
    encoder_args = builder.build(Settings(settings, builder.output_type))
    if encoder_args is None:
        raise InvalidArgumentsError(
            f"No encoder arguments for {builder.output_type.name} with the given encoding mode."
        )
    return encoder_args


def build_arguments(request: Optional[ConversionRequest]) -> List[str]:
    """
    Build the full FFmpeg argument list for a conversion request.

    The output path is always the last argument. Nothing here touches a
    subprocess, so every configuration error surfaces before launch.
    """
    if request is None:
        raise InvalidPresetError("The conversion preset must be valid.")

    encoder_args = build_encoder_arguments(request.output_type, request.settings)

    arguments = ["-n", "-stats", "-i", request.input_path]
    arguments.extend(encoder_args)
    arguments.append(request.output_path)

    if not arguments or not all(arguments):
        raise InvalidArgumentsError("Invalid ffmpeg process arguments.")

    return arguments


def _quote(argument: str) -> str:
    return f'"{argument}"'


def format_command_line(executable: str, arguments: List[str]) -> str:
    """
    Render an invocation for logs, quoting the input and output paths:

        ffmpeg -n -stats -i "in.wav" -acodec pcm_s16le "out.wav"
    """
    if len(arguments) < 4:
        return " ".join([executable] + list(arguments))

    rendered = list(arguments)
    rendered[3] = _quote(rendered[3])
    rendered[-1] = _quote(rendered[-1])
    return " ".join([executable] + rendered)
