"""
FileConverter Test Configuration and Fixtures

Provides:
- Isolated configuration per test module
- A fake FFmpeg process so jobs run without a real transcoder
- Generated test media for the tests that do need a real FFmpeg
"""

import io
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

import pytest

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from fileconverter.config import FileConverterConfig, TranscoderConfig, set_config


# =============================================================================
# SAMPLE FFMPEG OUTPUT
# =============================================================================

DURATION_LINE = "  Duration: 00:12:34.50, start: 0.000000, bitrate: 128 kb/s"
HALFWAY_LINE = "size=    1024kB time=00:06:17.25 bitrate= 128.0kbits/s speed=48.2x"
DONE_LINE = "size=    2048kB time=00:12:34.50 bitrate= 128.0kbits/s speed=48.5x"

SAMPLE_OUTPUT: List[str] = [
    "ffmpeg version 4.4.2 Copyright (c) 2000-2021 the FFmpeg developers",
    "Input #0, wav, from 'input.wav':",
    DURATION_LINE,
    "    Stream #0:0: Audio: pcm_s16le ([1][0][0][0] / 0x0001), 44100 Hz, stereo, s16, 1411 kb/s",
    "Stream mapping:",
    "  Stream #0:0 -> #0:0 (pcm_s16le (native) -> mp3 (libmp3lame))",
    "Output #0, mp3, to 'output.mp3':",
    HALFWAY_LINE,
    DONE_LINE,
    "video:0kB audio:2048kB subtitle:0kB other streams:0kB global headers:0kB muxing overhead: 0.012%",
]


# =============================================================================
# FAKE FFMPEG
# =============================================================================

class BrokenStream:
    """stderr that raises OSError after yielding some lines."""

    def __init__(self, lines: List[str], fail_after: int):
        self._lines = lines[:fail_after]
        self.closed = False

    def __iter__(self):
        for line in self._lines:
            yield line + "\n"
        raise OSError(5, "Input/output error")

    def close(self) -> None:
        self.closed = True


class FakeFFmpegProcess:
    """Stands in for subprocess.Popen, replaying canned stderr lines."""

    def __init__(self, args, lines: List[str], returncode: int = 0,
                 read_error_after: Optional[int] = None, **kwargs):
        self.args = args
        self.kwargs = kwargs
        if read_error_after is None:
            self.stderr = io.StringIO("".join(line + "\n" for line in lines))
        else:
            self.stderr = BrokenStream(lines, read_error_after)
        self.returncode: Optional[int] = None
        self.terminated = False
        self.killed = False
        self._exit_code = returncode

    def poll(self) -> Optional[int]:
        return self.returncode

    def wait(self, timeout: Optional[float] = None) -> int:
        self.returncode = self._exit_code
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self._exit_code = -15

    def kill(self) -> None:
        self.killed = True
        self._exit_code = -9

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.stderr.close()
        self.wait()


class FakeFFmpeg:
    """
    Popen replacement factory.

    Set `lines`, `returncode`, `read_error_after` or `launch_error` before
    the job runs; every launched process is appended to `processes`.
    """

    def __init__(self):
        self.lines: List[str] = list(SAMPLE_OUTPUT)
        self.returncode = 0
        self.launch_error: Optional[Exception] = None
        self.read_error_after: Optional[int] = None
        self.processes: List[FakeFFmpegProcess] = []

    def __call__(self, args, **kwargs) -> FakeFFmpegProcess:
        if self.launch_error is not None:
            raise self.launch_error
        process = FakeFFmpegProcess(
            args, self.lines, self.returncode, self.read_error_after, **kwargs
        )
        self.processes.append(process)
        return process

    @property
    def launched(self) -> bool:
        return bool(self.processes)


@pytest.fixture
def fake_ffmpeg(monkeypatch) -> FakeFFmpeg:
    """Replace subprocess.Popen with a canned FFmpeg."""
    fake = FakeFFmpeg()
    monkeypatch.setattr(subprocess, "Popen", fake)
    return fake


@pytest.fixture
def ffmpeg_executable(tmp_path) -> Path:
    """An existing file standing in for the FFmpeg binary."""
    path = tmp_path / "bin" / "ffmpeg"
    path.parent.mkdir()
    path.write_text("")
    return path


@pytest.fixture
def transcoder_config(ffmpeg_executable) -> TranscoderConfig:
    return TranscoderConfig(ffmpeg_path=str(ffmpeg_executable))


@pytest.fixture
def test_config(transcoder_config):
    """
    Install an isolated global configuration pointing at the fake FFmpeg.
    """
    config = FileConverterConfig()
    config.transcoder = transcoder_config
    config.jobs.max_concurrent_jobs = 2
    config.logging.level = "WARNING"  # Less noise in tests

    set_config(config)
    yield config
    set_config(None)


# =============================================================================
# TEST MEDIA GENERATION
# =============================================================================

class TestMediaGenerator:
    """
    Generates test media files using FFmpeg.
    No external downloads - creates synthetic audio and images.
    """

    __test__ = False

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._ffmpeg = shutil.which("ffmpeg")

    @property
    def ffmpeg(self) -> Optional[str]:
        return self._ffmpeg

    @property
    def has_ffmpeg(self) -> bool:
        return self._ffmpeg is not None

    def _run(self, cmd: List[str], output_path: Path) -> Optional[Path]:
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=60)
            if result.returncode == 0 and output_path.exists():
                return output_path
        except (subprocess.TimeoutExpired, OSError) as e:
            print(f"Failed to generate test media: {e}")
        return None

    def generate_test_audio(self, name: str = "tone", duration: int = 2) -> Optional[Path]:
        """Generate a 440 Hz sine wave WAV."""
        if not self.has_ffmpeg:
            return None

        output_path = self.output_dir / f"{name}.wav"
        cmd = [
            self._ffmpeg,
            "-y",
            "-f", "lavfi",
            "-i", f"sine=frequency=440:duration={duration}",
            str(output_path),
        ]
        return self._run(cmd, output_path)

    def generate_test_image(self, name: str = "pattern", width: int = 320, height: int = 240) -> Optional[Path]:
        """Generate a single-frame PNG test pattern."""
        if not self.has_ffmpeg:
            return None

        output_path = self.output_dir / f"{name}.png"
        cmd = [
            self._ffmpeg,
            "-y",
            "-f", "lavfi",
            "-i", f"testsrc=size={width}x{height}:rate=1",
            "-frames:v", "1",
            str(output_path),
        ]
        return self._run(cmd, output_path)


@pytest.fixture(scope="session")
def test_media_dir(tmp_path_factory) -> Path:
    """
    Session-scoped temp directory for test media.
    Auto-cleaned after all tests complete.
    """
    return tmp_path_factory.mktemp("fileconverter_test_media")


@pytest.fixture(scope="session")
def media_generator(test_media_dir) -> TestMediaGenerator:
    """Session-scoped media generator."""
    return TestMediaGenerator(test_media_dir)


@pytest.fixture(scope="session")
def test_audio(media_generator) -> Path:
    if not media_generator.has_ffmpeg:
        pytest.skip("FFmpeg not available for test media generation")

    path = media_generator.generate_test_audio()
    if not path:
        pytest.skip("Failed to generate test audio")
    return path


@pytest.fixture(scope="session")
def test_image(media_generator) -> Path:
    if not media_generator.has_ffmpeg:
        pytest.skip("FFmpeg not available for test media generation")

    path = media_generator.generate_test_image()
    if not path:
        pytest.skip("Failed to generate test image")
    return path


@pytest.fixture
def temp_output_dir(tmp_path) -> Path:
    """Per-test temp directory for output files."""
    output_dir = tmp_path / "output"
    output_dir.mkdir()
    return output_dir


# =============================================================================
# SKIP CONDITIONS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "requires_ffmpeg: marks tests that require FFmpeg"
    )


@pytest.fixture
def requires_ffmpeg():
    """Skip test if FFmpeg not available."""
    if not shutil.which("ffmpeg"):
        pytest.skip("FFmpeg not available")
