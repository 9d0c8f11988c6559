"""Tests for ffmpeg subprocess wrappers (no real ffmpeg is run)."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from audiobook_merge import ffmpeg
from audiobook_merge.models import ConversionJob

_detect_aac_encoder = ffmpeg.detect_aac_encoder


def _mock_result(returncode: int = 0, stderr: str = "", stdout: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture(autouse=True)
def _plain_aac():
    """Never query the real ffmpeg for aac_at."""
    with patch("audiobook_merge.ffmpeg.detect_aac_encoder", return_value="aac"):
        yield


def _job(tmp_path: Path, **kwargs) -> ConversionJob:
    source = tmp_path / "src" / "01 Intro.mp3"
    source.parent.mkdir(exist_ok=True)
    source.write_bytes(b"mp3")
    defaults = dict(
        source=source,
        destination=tmp_path / "tmp" / "001-01 Intro-finished.m4b",
        temp_dir=tmp_path / "tmp",
        extension="m4b",
        codec="aac",
        format="mp4",
    )
    defaults.update(kwargs)
    defaults["temp_dir"].mkdir(exist_ok=True)
    return ConversionJob(**defaults)


class TestBuildConvertCommand:
    def test_basic(self, tmp_path):
        job = _job(tmp_path)
        cmd = ffmpeg.build_convert_command(job)
        assert cmd[:3] == ["-y", "-i", str(job.source)]
        assert ["-c:a", "aac"] == cmd[cmd.index("-c:a"):cmd.index("-c:a") + 2]
        assert cmd[-3:] == ["-f", "mp4", str(job.working_file)]
        assert job.working_file.name == "001-01 Intro-converting.m4b"

    def test_audio_options(self, tmp_path):
        job = _job(tmp_path, channels=1, sample_rate=22050, bit_rate="64k", profile="aac_he")
        cmd = ffmpeg.build_convert_command(job)
        for flag, value in [("-ac", "1"), ("-ar", "22050"), ("-b:a", "64k"), ("-profile:a", "aac_he")]:
            assert cmd[cmd.index(flag) + 1] == value

    def test_alac_omits_format(self, tmp_path):
        cmd = ffmpeg.build_convert_command(_job(tmp_path, codec="alac"))
        assert "-f" not in cmd

    def test_prefers_aac_at(self, tmp_path):
        with patch("audiobook_merge.ffmpeg.detect_aac_encoder", return_value="aac_at"):
            cmd = ffmpeg.build_convert_command(_job(tmp_path))
        assert cmd[cmd.index("-c:a") + 1] == "aac_at"


class TestConvert:
    def test_success_renames_working_file(self, tmp_path):
        job = _job(tmp_path)

        def fake_run(args):
            Path(args[-1]).write_bytes(b"encoded")
            return _mock_result()

        with patch("audiobook_merge.ffmpeg._run_ffmpeg", side_effect=fake_run):
            result = ffmpeg.convert(job)
        assert result.success
        assert result.produced_path == job.destination
        assert job.destination.read_bytes() == b"encoded"
        assert not job.working_file.exists()

    def test_failure_leaves_no_files(self, tmp_path):
        job = _job(tmp_path)

        def fake_run(args):
            Path(args[-1]).write_bytes(b"")
            return _mock_result(returncode=1, stderr="Invalid data found")

        with patch("audiobook_merge.ffmpeg._run_ffmpeg", side_effect=fake_run):
            result = ffmpeg.convert(job)
        assert not result.success
        assert "Invalid data" in result.diagnostic
        assert not job.working_file.exists()
        assert not job.destination.exists()

    def test_existing_destination_reused(self, tmp_path):
        job = _job(tmp_path)
        job.destination.write_bytes(b"done")
        with patch("audiobook_merge.ffmpeg._run_ffmpeg") as mock_run:
            result = ffmpeg.convert(job)
        assert result.success
        mock_run.assert_not_called()

    def test_force_reconverts(self, tmp_path):
        job = _job(tmp_path, force=True)
        job.destination.write_bytes(b"old")

        def fake_run(args):
            Path(args[-1]).write_bytes(b"new")
            return _mock_result()

        with patch("audiobook_merge.ffmpeg._run_ffmpeg", side_effect=fake_run):
            ffmpeg.convert(job)
        assert job.destination.read_bytes() == b"new"


class TestWriteListing:
    def test_absolute_quoted_paths(self, tmp_path):
        files = [tmp_path / "a.m4b", tmp_path / "it's.m4b"]
        listing = tmp_path / "listing.txt"
        ffmpeg.write_listing(files, listing)
        lines = listing.read_text().splitlines()
        assert lines[0] == f"file '{(tmp_path / 'a.m4b').resolve()}'"
        assert lines[1].endswith("it'\\''s.m4b'")


class TestConcat:
    def test_builds_stream_copy(self, tmp_path):
        output = tmp_path / "merged.m4b"

        def fake_run(args):
            output.write_bytes(b"merged")
            return _mock_result()

        with patch("audiobook_merge.ffmpeg._run_ffmpeg", side_effect=fake_run) as mock_run:
            result = ffmpeg.concat(tmp_path / "list.txt", output, "mp4", "aac")
        args = mock_run.call_args.args[0]
        assert result.success
        assert ["-f", "concat", "-safe", "0"] == args[1:5]
        assert ["-c", "copy"] == args[args.index("-c"):args.index("-c") + 2]
        assert args[-3:] == ["-f", "mp4", str(output)]

    def test_alac_omits_format(self, tmp_path):
        output = tmp_path / "merged.m4a"
        with patch("audiobook_merge.ffmpeg._run_ffmpeg", return_value=_mock_result()) as mock_run:
            output.write_bytes(b"x")
            ffmpeg.concat(tmp_path / "list.txt", output, "mp4", "alac")
        args = mock_run.call_args.args[0]
        assert args[-2:] == ["copy", str(output)]

    def test_failure(self, tmp_path):
        with patch("audiobook_merge.ffmpeg._run_ffmpeg", return_value=_mock_result(1, "boom")):
            result = ffmpeg.concat(tmp_path / "list.txt", tmp_path / "merged.m4b")
        assert not result.success
        assert result.diagnostic == "boom"


class TestDetectSilences:
    def test_returns_log(self, tmp_path):
        log = "[silencedetect @ 0x1] silence_start: 1.0\n"
        with patch("audiobook_merge.ffmpeg._run_ffmpeg", return_value=_mock_result(stderr=log)) as mock_run:
            result = ffmpeg.detect_silences(tmp_path / "m.m4b", -35.0, 1.5)
        assert result.success
        assert result.diagnostic == log
        assert "silencedetect=noise=-35.0dB:d=1.5" in mock_run.call_args.args[0]


class TestWriteTags:
    def test_with_cover(self, tmp_path):
        cover = tmp_path / "cover.jpg"
        cover.write_bytes(b"jpg")
        output = tmp_path / "out.m4b.tmp"

        def fake_run(args):
            output.write_bytes(b"tagged")
            return _mock_result()

        with patch("audiobook_merge.ffmpeg._run_ffmpeg", side_effect=fake_run) as mock_run:
            result = ffmpeg.write_tags(tmp_path / "m.m4b", tmp_path / "meta.txt", output, "mp4", cover)
        args = mock_run.call_args.args[0]
        assert result.success
        assert "attached_pic" in args
        assert ["-map_metadata", "1"] == args[args.index("-map_metadata"):args.index("-map_metadata") + 2]
        assert args[-3:] == ["-f", "ipod", str(output)]

    def test_mp4_always_uses_ipod_muxer(self, tmp_path):
        output = tmp_path / "tmp_book.tagged.m4b"

        def fake_run(args):
            output.write_bytes(b"tagged")
            return _mock_result()

        with patch("audiobook_merge.ffmpeg._run_ffmpeg", side_effect=fake_run) as mock_run:
            result = ffmpeg.write_tags(tmp_path / "m.m4b", tmp_path / "meta.txt", output, "mp4")
        args = mock_run.call_args.args[0]
        assert result.success
        assert args[-3:] == ["-f", "ipod", str(output)]

    def test_failure_removes_output(self, tmp_path):
        output = tmp_path / "out.m4b.tmp"
        output.write_bytes(b"")
        with patch("audiobook_merge.ffmpeg._run_ffmpeg", return_value=_mock_result(1, "err")):
            result = ffmpeg.write_tags(tmp_path / "m.m4b", tmp_path / "meta.txt", output)
        assert not result.success
        assert not output.exists()


class TestDetectAacEncoder:
    def test_prefers_aac_at(self):
        _detect_aac_encoder.cache_clear()
        with patch("audiobook_merge.ffmpeg.subprocess.run", return_value=_mock_result(stdout=" A..... aac_at  AAC (AudioToolbox)")):
            assert _detect_aac_encoder() == "aac_at"
        _detect_aac_encoder.cache_clear()

    def test_falls_back_to_aac(self):
        _detect_aac_encoder.cache_clear()
        with patch("audiobook_merge.ffmpeg.subprocess.run", return_value=_mock_result(stdout=" A..... aac  AAC")):
            assert _detect_aac_encoder() == "aac"
        _detect_aac_encoder.cache_clear()


class TestFormatFlagAllowed:
    def test_alac_suppresses_format_flag(self):
        assert ffmpeg.format_flag_allowed("aac") is True
        assert ffmpeg.format_flag_allowed("") is True
        assert ffmpeg.format_flag_allowed("alac") is False
