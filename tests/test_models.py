"""Tests for models.py -- enums, constants, value types."""

from pathlib import Path

from audiobook_merge.models import (
    EXTENSION_FORMAT,
    FORMAT_CODEC,
    PLACEHOLDER_TAGS,
    STAGE_ORDER,
    AudioFile,
    BatchMatch,
    Chapter,
    ConversionJob,
    PoolSnapshot,
    Silence,
    Stage,
    StageStatus,
    TaskStatus,
)


class TestStage:
    def test_all_stages(self):
        assert len(Stage) == 8
        assert Stage.LOAD == "load"
        assert Stage.CLEANUP == "cleanup"

    def test_order_covers_every_stage(self):
        assert STAGE_ORDER[0] == Stage.LOAD
        assert STAGE_ORDER[-1] == Stage.CLEANUP
        assert set(STAGE_ORDER) == set(Stage)


class TestStatuses:
    def test_stage_status_values(self):
        assert StageStatus("failed") is StageStatus.FAILED

    def test_task_status_values(self):
        assert [s.value for s in TaskStatus] == ["queued", "running", "succeeded", "failed"]


class TestFormatTables:
    def test_every_format_has_codec(self):
        for fmt in EXTENSION_FORMAT.values():
            assert fmt in FORMAT_CODEC

    def test_m4b_is_mp4_aac(self):
        assert EXTENSION_FORMAT["m4b"] == "mp4"
        assert FORMAT_CODEC["mp4"] == "aac"

    def test_placeholders_case_sensitive(self):
        assert PLACEHOLDER_TAGS["a"] == "artist"
        assert PLACEHOLDER_TAGS["A"] == "sort_artist"


class TestValueTypes:
    def test_audio_file_extension(self):
        assert AudioFile(path=Path("/x/Track.MP3")).extension == "mp3"

    def test_chapter_end(self):
        assert Chapter(start=1000, length=500).end == 1500

    def test_silence_midpoint(self):
        silence = Silence(start=229000, length=4000)
        assert silence.end == 233000
        assert silence.midpoint == 231000

    def test_working_file(self):
        job = ConversionJob(
            source=Path("/in/a.mp3"),
            destination=Path("/tmp/001-a-finished.m4b"),
            temp_dir=Path("/tmp"),
            extension="m4b",
            codec="aac",
            format="mp4",
        )
        assert job.working_file == Path("/tmp/001-a-converting.m4b")

    def test_batch_match_tags_skip_empty(self):
        match = BatchMatch(directory=Path("/x"), fields={"a": "Author", "n": "", "s": "Saga"})
        assert match.tags == {"artist": "Author", "series": "Saga"}
        assert match.value("p") == ""

    def test_pool_snapshot_remaining(self):
        assert PoolSnapshot(queued=2, running=1, finished=4, total=7).remaining == 3
