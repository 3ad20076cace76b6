"""
Configuration management for FileConverter
"""

import sys
import yaml
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Directory FileConverter is installed in; a bundled ffmpeg lives next to it
APPLICATION_DIRECTORY = Path(__file__).resolve().parent


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8766


class TranscoderConfig(BaseModel):
    ffmpeg_path: str = "auto"  # "auto" or an explicit path to the executable
    application_directory: str = str(APPLICATION_DIRECTORY)

    @property
    def bundled_executable(self) -> Path:
        name = "ffmpeg.exe" if sys.platform == "win32" else "ffmpeg"
        return Path(self.application_directory) / name


class JobsConfig(BaseModel):
    max_concurrent_jobs: int = 2
    keep_finished_jobs: int = 100  # Finished job records kept for status queries


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    file: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 3


class FileConverterConfig(BaseSettings):
    """
    Root configuration.

    Values come from the YAML file; FILECONVERTER_<SECTION>__<FIELD>
    environment variables override them.
    """
    model_config = SettingsConfigDict(
        env_prefix="FILECONVERTER_",
        env_nested_delimiter="__",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    transcoder: TranscoderConfig = Field(default_factory=TranscoderConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment first so it wins over values read from the YAML file
        return env_settings, init_settings, file_secret_settings


def find_config_file() -> Optional[Path]:
    """Find the configuration file in standard locations."""
    search_paths = [
        Path.cwd() / "fileconverter.yaml",
        Path.cwd() / "fileconverter.yml",
        Path.cwd() / "config" / "fileconverter.yaml",
        Path.home() / ".config" / "fileconverter" / "fileconverter.yaml",
        Path("/etc/fileconverter/fileconverter.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config(config_path: Optional[str] = None) -> FileConverterConfig:
    """Load configuration from YAML file or use defaults."""
    config_file = Path(config_path) if config_path else find_config_file()

    if config_file and config_file.exists():
        with open(config_file, "r") as f:
            yaml_data = yaml.safe_load(f) or {}
        return FileConverterConfig(**yaml_data)

    return FileConverterConfig()


# Global config instance
_config: Optional[FileConverterConfig] = None


def get_config() -> FileConverterConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: FileConverterConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
