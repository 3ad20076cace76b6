"""
Data models for FileConverter
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class OutputType(str, Enum):
    AAC = "aac"
    AVI = "avi"
    FLAC = "flac"
    ICO = "ico"
    JPG = "jpg"
    MKV = "mkv"
    MP3 = "mp3"
    OGG = "ogg"
    PNG = "png"
    WAV = "wav"
    PDF = "pdf"  # Rendered by a document converter, not by FFmpeg


class SettingKey(str, Enum):
    AUDIO_BITRATE = "AudioBitrate"
    VIDEO_QUALITY = "VideoQuality"
    VIDEO_SCALE = "VideoScale"
    IMAGE_QUALITY = "ImageQuality"
    IMAGE_SCALE = "ImageScale"
    AUDIO_ENCODING_MODE = "AudioEncodingMode"
    VIDEO_ENCODING_SPEED = "VideoEncodingSpeed"


class EncodingMode(str, Enum):
    MP3_VBR = "Mp3VBR"
    MP3_CBR = "Mp3CBR"
    WAV_8 = "Wav8"
    WAV_16 = "Wav16"
    WAV_24 = "Wav24"
    WAV_32 = "Wav32"


class VideoEncodingSpeed(str, Enum):
    ULTRA_FAST = "UltraFast"
    SUPER_FAST = "SuperFast"
    VERY_FAST = "VeryFast"
    FASTER = "Faster"
    FAST = "Fast"
    MEDIUM = "Medium"
    SLOW = "Slow"
    SLOWER = "Slower"
    VERY_SLOW = "VerySlow"


class JobState(str, Enum):
    NOT_STARTED = "NotStarted"
    INITIALIZING = "Initializing"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)


SettingValue = Union[int, float, str]
ConversionSettings = Dict[SettingKey, SettingValue]


class ConversionRequest(BaseModel):
    """One file to convert. Frozen: a running job never sees it change."""
    model_config = ConfigDict(frozen=True)

    input_path: str
    output_path: str
    output_type: OutputType
    settings: ConversionSettings = Field(default_factory=dict)


class JobStatusResponse(BaseModel):
    job_id: str
    state: JobState
    progress: float = 0.0
    input_path: str
    output_path: str
    output_type: OutputType
    cancelled: bool = False
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class FormatInfo(BaseModel):
    output_type: OutputType
    required_settings: List[SettingKey] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    uptime_seconds: float
    ffmpeg_path: Optional[str] = None
    ffmpeg_found: bool = False
    active_jobs: int = 0


class StatsResponse(BaseModel):
    total_jobs_processed: int = 0
    successful_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    active_jobs: int = 0
    uptime_seconds: float = 0.0
