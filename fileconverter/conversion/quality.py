"""
Quality knob mapping.

Converts the user-facing quality settings (0-100 sliders, kbps bitrates,
named encoding modes) into the native parameter of each FFmpeg encoder.
All functions are pure.
"""

import logging
import math
from typing import Dict, List, Optional, Tuple, Union

from ..models import EncodingMode, VideoEncodingSpeed
from .errors import QualityMappingError

logger = logging.getLogger(__name__)


# =============================================================================
# ENCODER RANGES
# =============================================================================

# Native AAC encoder VBR quality (-q:a), https://trac.ffmpeg.org/wiki/Encode/AAC
AAC_QUALITY_RANGE: Tuple[float, float] = (0.1, 2.0)
AAC_BITRATE_RANGE: Tuple[int, int] = (32, 320)

# MPEG-4 part 2 quantizer (-qscale:v), 1 is best
MPEG4_QSCALE_RANGE: Tuple[int, int] = (1, 31)

# MJPEG quantizer (-q:v), 2 is best
JPG_QSCALE_RANGE: Tuple[int, int] = (2, 31)

# x264 constant rate factor, 0 is lossless
H264_CRF_RANGE: Tuple[int, int] = (0, 51)

# LAME VBR presets V0..V9 with their average bitrate in kbps
# https://trac.ffmpeg.org/wiki/Encode/MP3
MP3_VBR_BITRATES: List[Tuple[int, int]] = [
    (0, 245),
    (1, 225),
    (2, 190),
    (3, 175),
    (4, 165),
    (5, 130),
    (6, 115),
    (7, 100),
    (8, 85),
    (9, 65),
]

# libvorbis -qscale:a nominal bitrates in kbps
VORBIS_BITRATES: List[Tuple[int, int]] = [
    (-1, 45),
    (0, 64),
    (1, 80),
    (2, 96),
    (3, 112),
    (4, 128),
    (5, 160),
    (6, 192),
    (7, 224),
    (8, 256),
    (9, 320),
    (10, 500),
]

H264_PRESETS: Dict[VideoEncodingSpeed, str] = {
    VideoEncodingSpeed.ULTRA_FAST: "ultrafast",
    VideoEncodingSpeed.SUPER_FAST: "superfast",
    VideoEncodingSpeed.VERY_FAST: "veryfast",
    VideoEncodingSpeed.FASTER: "faster",
    VideoEncodingSpeed.FAST: "fast",
    VideoEncodingSpeed.MEDIUM: "medium",
    VideoEncodingSpeed.SLOW: "slow",
    VideoEncodingSpeed.SLOWER: "slower",
    VideoEncodingSpeed.VERY_SLOW: "veryslow",
}

WAV_CODECS: Dict[EncodingMode, str] = {
    EncodingMode.WAV_8: "pcm_u8",
    EncodingMode.WAV_16: "pcm_s16le",
    EncodingMode.WAV_24: "pcm_s24le",
    EncodingMode.WAV_32: "pcm_s32le",
}


# =============================================================================
# HELPERS
# =============================================================================

def _clamp_quality(quality: Union[int, float], name: str) -> float:
    """Clamp a 0-100 quality knob, warning when the input was out of range."""
    try:
        value = float(quality)
    except (TypeError, ValueError):
        raise QualityMappingError(f"{name} quality must be a number, got {quality!r}")

    if not math.isfinite(value):
        raise QualityMappingError(f"{name} quality must be finite, got {quality!r}")

    if value < 0 or value > 100:
        logger.warning(f"{name} quality {value} outside 0-100, clamping")
        value = min(100.0, max(0.0, value))
    return value


def _check_bitrate(bitrate: Union[int, float, str], name: str) -> int:
    """Validate a kbps bitrate; only positive whole numbers are accepted."""
    try:
        value = float(bitrate)
    except (TypeError, ValueError):
        raise QualityMappingError(f"{name} bitrate must be a number, got {bitrate!r}")

    if not math.isfinite(value) or value <= 0 or value != int(value):
        raise QualityMappingError(f"{name} bitrate must be a positive integer, got {bitrate!r}")
    return int(value)


def _nearest_index(bitrate: int, table: List[Tuple[int, int]]) -> int:
    """Pick the table index whose bitrate is closest; ties go to the higher quality."""
    best_index, best_bitrate = table[0]
    for index, nominal in table:
        distance = abs(nominal - bitrate)
        best_distance = abs(best_bitrate - bitrate)
        if distance < best_distance or (distance == best_distance and nominal > best_bitrate):
            best_index, best_bitrate = index, nominal
    return best_index


# =============================================================================
# AUDIO
# =============================================================================

def aac_bitrate_to_quality_index(bitrate: int) -> float:
    """
    Map a target AAC bitrate to the native encoder's VBR quality.

    Bitrates are clamped to 32-320 kbps and mapped linearly onto 0.1-2.0.
    """
    value = _check_bitrate(bitrate, "AAC")
    low, high = AAC_BITRATE_RANGE
    clamped = min(high, max(low, value))

    q_low, q_high = AAC_QUALITY_RANGE
    quality = q_low + (clamped - low) * (q_high - q_low) / (high - low)
    return round(quality, 2)


def quality_index_to_aac_bitrate(quality: float) -> int:
    """Inverse of aac_bitrate_to_quality_index, within 2 kbps."""
    low, high = AAC_BITRATE_RANGE
    q_low, q_high = AAC_QUALITY_RANGE
    quality = min(q_high, max(q_low, float(quality)))
    return int(round(low + (quality - q_low) * (high - low) / (q_high - q_low)))


def mp3_vbr_bitrate_to_quality_index(bitrate: int) -> int:
    """Map a bitrate to the LAME V-preset (0-9) with the nearest average bitrate."""
    value = _check_bitrate(bitrate, "MP3")
    return _nearest_index(value, MP3_VBR_BITRATES)


def mp3_cbr_bitrate(bitrate: int) -> int:
    """Constant bitrate is handed to LAME as is (kbps)."""
    return _check_bitrate(bitrate, "MP3")


def vorbis_bitrate_to_quality_index(bitrate: int) -> int:
    """Map a bitrate to the libvorbis quality (-1..10) with the nearest nominal bitrate."""
    value = _check_bitrate(bitrate, "Vorbis")
    return _nearest_index(value, VORBIS_BITRATES)


def wav_encoding_to_codec(mode: Union[EncodingMode, str]) -> Optional[str]:
    """
    Map a WAV bit depth to its PCM codec.

    Returns None for modes that are not WAV modes, meaning there are no
    encoder arguments for this request.
    """
    try:
        mode = EncodingMode(mode)
    except ValueError:
        return None
    return WAV_CODECS.get(mode)


# =============================================================================
# VIDEO / IMAGE
# =============================================================================

def mpeg4_quality_to_qscale(quality: int) -> int:
    """Map 0-100 quality to the MPEG-4 quantizer, 100 -> 1 (best), 0 -> 31."""
    value = _clamp_quality(quality, "MPEG-4")
    low, high = MPEG4_QSCALE_RANGE
    return int(round(high - value * (high - low) / 100))


def qscale_to_mpeg4_quality(qscale: int) -> int:
    low, high = MPEG4_QSCALE_RANGE
    return int(round((high - qscale) * 100 / (high - low)))


def jpg_quality_to_qscale(quality: int) -> int:
    """Map 0-100 quality to the MJPEG quantizer, 100 -> 2 (best), 0 -> 31."""
    value = _clamp_quality(quality, "JPEG")
    low, high = JPG_QSCALE_RANGE
    return int(round(high - value * (high - low) / 100))


def qscale_to_jpg_quality(qscale: int) -> int:
    low, high = JPG_QSCALE_RANGE
    return int(round((high - qscale) * 100 / (high - low)))


def h264_quality_to_crf(quality: int) -> int:
    """Map 0-100 quality to x264 CRF, 100 -> 0 (lossless), 0 -> 51."""
    value = _clamp_quality(quality, "H.264")
    low, high = H264_CRF_RANGE
    return int(round(high - value * (high - low) / 100))


def crf_to_h264_quality(crf: int) -> int:
    low, high = H264_CRF_RANGE
    return int(round((high - crf) * 100 / (high - low)))


def h264_speed_to_preset(speed: Union[VideoEncodingSpeed, str]) -> str:
    """Map an encoding speed to the x264 preset name (name or preset token accepted)."""
    if isinstance(speed, VideoEncodingSpeed):
        return H264_PRESETS[speed]

    token = str(speed).strip().lower()
    if token in H264_PRESETS.values():
        return token

    raise QualityMappingError(f"Unknown H.264 encoding speed: {speed!r}")
