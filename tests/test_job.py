"""
Tests for ConversionJob supervision, run against a fake FFmpeg process.
"""

import logging
import subprocess
from datetime import timedelta

import pytest

from fileconverter.config import TranscoderConfig
from fileconverter.conversion import (
    ConversionCancelledError, ConversionFailedError, ConversionJob,
    InvalidPresetError, MissingSettingError, QualityMappingError,
    TranscoderLaunchError,
    TranscoderNotFoundError, UnsupportedFormatError, find_ffmpeg
)
from fileconverter.conversion import job as job_module
from fileconverter.models import (
    ConversionRequest, EncodingMode, JobState, OutputType, SettingKey
)

from conftest import DURATION_LINE, HALFWAY_LINE, SAMPLE_OUTPUT


@pytest.fixture
def mp3_request():
    return ConversionRequest(
        input_path="input.wav",
        output_path="output.mp3",
        output_type=OutputType.MP3,
        settings={
            SettingKey.AUDIO_ENCODING_MODE: EncodingMode.MP3_VBR,
            SettingKey.AUDIO_BITRATE: 190,
        },
    )


class TestSuccess:
    def test_runs_to_completion(self, fake_ffmpeg, transcoder_config, mp3_request):
        job = ConversionJob(mp3_request, config=transcoder_config)
        assert job.state == JobState.NOT_STARTED

        job.run()

        assert job.state == JobState.SUCCEEDED
        assert job.progress == 1.0
        assert job.error_message is None
        assert job.return_code == 0
        assert job.file_duration == timedelta(minutes=12, seconds=34, milliseconds=500)
        assert job.completed_at is not None

    def test_launches_ffmpeg_with_built_arguments(self, fake_ffmpeg, transcoder_config, mp3_request):
        job = ConversionJob(mp3_request, config=transcoder_config)
        job.run()

        process = fake_ffmpeg.processes[0]
        assert process.args == [
            transcoder_config.ffmpeg_path,
            "-n", "-stats", "-i", "input.wav",
            "-codec:a", "libmp3lame", "-q:a", "2",
            "output.mp3",
        ]
        assert process.kwargs["stdout"] == subprocess.DEVNULL
        assert process.kwargs["stderr"] == subprocess.PIPE
        assert not process.kwargs.get("shell")

    def test_progress_callback(self, fake_ffmpeg, transcoder_config, mp3_request):
        updates = []
        job = ConversionJob(mp3_request, config=transcoder_config, progress_callback=updates.append)
        job.run()

        assert updates[0] == pytest.approx(0.5)
        assert updates[-1] == 1.0
        assert updates == sorted(updates)

    def test_callback_errors_do_not_fail_the_job(self, fake_ffmpeg, transcoder_config, mp3_request):
        def broken(progress):
            raise RuntimeError("display gone")

        job = ConversionJob(mp3_request, config=transcoder_config, progress_callback=broken)
        job.run()
        assert job.state == JobState.SUCCEEDED

    def test_every_output_line_is_logged(self, fake_ffmpeg, transcoder_config, mp3_request, caplog):
        caplog.set_level(logging.DEBUG, logger="fileconverter.ffmpeg")
        ConversionJob(mp3_request, config=transcoder_config).run()

        ffmpeg_records = [r for r in caplog.records if r.name == "fileconverter.ffmpeg"]
        assert len(ffmpeg_records) == len(SAMPLE_OUTPUT)

    def test_command_line_is_logged(self, fake_ffmpeg, transcoder_config, mp3_request, caplog):
        caplog.set_level(logging.INFO, logger="fileconverter")
        job = ConversionJob(mp3_request, config=transcoder_config)
        job.run()

        assert f'Execute command: {transcoder_config.ffmpeg_path} -n -stats -i "input.wav"' in caplog.text
        assert job.command_line().endswith('"output.mp3"')

    def test_non_zero_exit_without_marker_succeeds(self, fake_ffmpeg, transcoder_config, mp3_request, caplog):
        fake_ffmpeg.returncode = 1
        job = ConversionJob(mp3_request, config=transcoder_config)
        job.run()

        assert job.state == JobState.SUCCEEDED
        assert job.return_code == 1
        assert "exited with code 1" in caplog.text

    def test_progress_stays_zero_without_duration(self, fake_ffmpeg, transcoder_config, mp3_request):
        fake_ffmpeg.lines = [HALFWAY_LINE]
        updates = []
        job = ConversionJob(mp3_request, config=transcoder_config, progress_callback=updates.append)
        job.run()

        assert updates == [0.0, 1.0]


class TestFailure:
    def test_failure_marker_fails_job(self, fake_ffmpeg, transcoder_config, mp3_request):
        failure = "input.wav: No such file or directory"
        fake_ffmpeg.lines = ["ffmpeg version 4.4.2", failure]
        fake_ffmpeg.returncode = 1

        job = ConversionJob(mp3_request, config=transcoder_config)
        with pytest.raises(ConversionFailedError) as exc_info:
            job.run()

        assert exc_info.value.message == failure
        assert job.state == JobState.FAILED
        assert job.error_message == failure

    def test_first_failure_wins_and_output_is_drained(self, fake_ffmpeg, transcoder_config, mp3_request, caplog):
        caplog.set_level(logging.DEBUG, logger="fileconverter.ffmpeg")
        fake_ffmpeg.lines = [
            DURATION_LINE,
            "Error while opening encoder for output stream #0:0",
            HALFWAY_LINE,
            "Conversion failed! Exiting.",
        ]

        job = ConversionJob(mp3_request, config=transcoder_config)
        with pytest.raises(ConversionFailedError):
            job.run()

        assert job.error_message == "Error while opening encoder for output stream #0:0"
        assert job.progress == 0.0
        ffmpeg_records = [r for r in caplog.records if r.name == "fileconverter.ffmpeg"]
        assert len(ffmpeg_records) == 4

    def test_missing_executable(self, fake_ffmpeg, tmp_path, mp3_request):
        config = TranscoderConfig(ffmpeg_path=str(tmp_path / "nowhere" / "ffmpeg"))
        job = ConversionJob(mp3_request, config=config)

        with pytest.raises(TranscoderNotFoundError) as exc_info:
            job.run()

        assert "reinstall" in exc_info.value.message
        assert job.state == JobState.FAILED
        assert job.error_message == exc_info.value.message
        assert not fake_ffmpeg.launched

    def test_unsupported_format_never_launches(self, fake_ffmpeg, transcoder_config):
        request = ConversionRequest(
            input_path="doc.docx", output_path="doc.pdf", output_type=OutputType.PDF
        )
        job = ConversionJob(request, config=transcoder_config)

        with pytest.raises(UnsupportedFormatError):
            job.run()

        assert job.state == JobState.FAILED
        assert "not implemented" in job.error_message
        assert not fake_ffmpeg.launched

    def test_missing_setting_never_launches(self, fake_ffmpeg, transcoder_config):
        request = ConversionRequest(
            input_path="in.wav", output_path="out.ogg", output_type=OutputType.OGG
        )
        job = ConversionJob(request, config=transcoder_config)

        with pytest.raises(MissingSettingError):
            job.run()
        assert not fake_ffmpeg.launched

    def test_missing_request(self, fake_ffmpeg, transcoder_config):
        job = ConversionJob(None, config=transcoder_config)

        with pytest.raises(InvalidPresetError):
            job.run()
        assert job.error_message == "The conversion preset must be valid."

    def test_killed_by_signal_fails_job(self, fake_ffmpeg, transcoder_config, mp3_request):
        fake_ffmpeg.lines = [DURATION_LINE, HALFWAY_LINE]
        fake_ffmpeg.returncode = -9

        job = ConversionJob(mp3_request, config=transcoder_config)
        with pytest.raises(TranscoderLaunchError):
            job.run()

        assert job.state == JobState.FAILED
        assert job.error_message == "Failed to read FFMPEG output."
        assert job.return_code == -9
        assert job.progress == pytest.approx(0.5)

    def test_unreadable_output_fails_job(self, fake_ffmpeg, transcoder_config, mp3_request):
        fake_ffmpeg.read_error_after = 8

        job = ConversionJob(mp3_request, config=transcoder_config)
        with pytest.raises(TranscoderLaunchError) as exc_info:
            job.run()

        assert isinstance(exc_info.value.__cause__, OSError)
        assert fake_ffmpeg.processes[0].terminated
        assert job.state == JobState.FAILED
        assert job.error_message == "Failed to read FFMPEG output."
        assert job.progress == pytest.approx(0.5)

    @pytest.mark.parametrize("bitrate", ["nan", "inf"])
    def test_non_finite_setting_fails_job(self, fake_ffmpeg, transcoder_config, bitrate):
        request = ConversionRequest(
            input_path="in.wav",
            output_path="out.ogg",
            output_type=OutputType.OGG,
            settings={SettingKey.AUDIO_BITRATE: bitrate},
        )
        job = ConversionJob(request, config=transcoder_config)

        with pytest.raises(QualityMappingError):
            job.run()

        assert job.state == JobState.FAILED
        assert not fake_ffmpeg.launched

    def test_launch_failure(self, fake_ffmpeg, transcoder_config, mp3_request):
        launch_error = PermissionError(13, "Permission denied")
        fake_ffmpeg.launch_error = launch_error

        job = ConversionJob(mp3_request, config=transcoder_config)
        with pytest.raises(TranscoderLaunchError) as exc_info:
            job.run()

        assert exc_info.value.__cause__ is launch_error
        assert job.state == JobState.FAILED
        assert job.error_message == "Failed to launch FFMPEG process."


class TestLifecycle:
    def test_initialize_then_convert(self, fake_ffmpeg, transcoder_config, mp3_request):
        job = ConversionJob(mp3_request, config=transcoder_config)
        job.initialize()

        assert job.state == JobState.INITIALIZING
        assert job.executable_path == transcoder_config.ffmpeg_path
        assert job.arguments[-1] == "output.mp3"
        assert not fake_ffmpeg.launched

        job.convert()
        assert job.state == JobState.SUCCEEDED

    def test_convert_requires_initialize(self, fake_ffmpeg, transcoder_config, mp3_request):
        job = ConversionJob(mp3_request, config=transcoder_config)
        with pytest.raises(RuntimeError):
            job.convert()

    def test_job_runs_once(self, fake_ffmpeg, transcoder_config, mp3_request):
        job = ConversionJob(mp3_request, config=transcoder_config)
        job.run()
        with pytest.raises(RuntimeError):
            job.run()
        assert len(fake_ffmpeg.processes) == 1

    def test_terminal_state_is_final(self, fake_ffmpeg, transcoder_config, mp3_request):
        job = ConversionJob(mp3_request, config=transcoder_config)
        job.run()

        job.conversion_failed("late failure")
        assert job.state == JobState.SUCCEEDED
        assert job.error_message is None
        assert job.cancel() is False

    def test_uses_global_config_by_default(self, fake_ffmpeg, test_config, mp3_request):
        job = ConversionJob(mp3_request)
        assert job.config is test_config.transcoder


class TestCancellation:
    def test_cancel_before_run(self, fake_ffmpeg, transcoder_config, mp3_request):
        job = ConversionJob(mp3_request, config=transcoder_config)
        assert job.cancel() is True

        with pytest.raises(ConversionCancelledError):
            job.run()

        assert job.state == JobState.FAILED
        assert job.cancelled
        assert not fake_ffmpeg.launched

    def test_cancel_while_running_terminates_ffmpeg(self, fake_ffmpeg, transcoder_config, mp3_request):
        job = ConversionJob(mp3_request, config=transcoder_config)
        job.progress_callback = lambda progress: job.cancel()

        with pytest.raises(ConversionCancelledError):
            job.run()

        process = fake_ffmpeg.processes[0]
        assert process.terminated
        assert job.state == JobState.FAILED
        assert job.error_message == "Conversion cancelled."
        assert job.progress == pytest.approx(0.5)


class TestTerminateProcess:
    def test_already_exited(self, fake_ffmpeg):
        process = fake_ffmpeg(["ffmpeg"])
        process.wait()
        job_module.terminate_process(process)
        assert not process.terminated

    def test_kills_after_timeout(self, fake_ffmpeg):
        process = fake_ffmpeg(["ffmpeg"])

        def hang(timeout=None):
            raise subprocess.TimeoutExpired("ffmpeg", timeout)

        process.wait = hang
        job_module.terminate_process(process, timeout=0.01)
        assert process.terminated
        assert process.killed


class TestFindFFmpeg:
    def test_explicit_path(self):
        assert find_ffmpeg(TranscoderConfig(ffmpeg_path="/opt/ffmpeg/bin/ffmpeg")) == "/opt/ffmpeg/bin/ffmpeg"

    def test_bundled_executable_preferred(self, tmp_path, monkeypatch):
        config = TranscoderConfig(application_directory=str(tmp_path))
        config.bundled_executable.write_text("")
        monkeypatch.setattr(job_module.shutil, "which", lambda name: "/usr/bin/ffmpeg")

        assert find_ffmpeg(config) == str(config.bundled_executable)

    def test_falls_back_to_path(self, tmp_path, monkeypatch):
        config = TranscoderConfig(application_directory=str(tmp_path))
        monkeypatch.setattr(job_module.shutil, "which", lambda name: "/usr/bin/ffmpeg")

        assert find_ffmpeg(config) == "/usr/bin/ffmpeg"

    def test_not_found_reports_bundled_location(self, tmp_path, monkeypatch):
        config = TranscoderConfig(application_directory=str(tmp_path))
        monkeypatch.setattr(job_module.shutil, "which", lambda name: None)

        assert find_ffmpeg(config) == str(config.bundled_executable)
