"""Tests for the concat stage."""

from unittest.mock import patch

import pytest

from audiobook_merge.config import MergeConfig
from audiobook_merge.context import MergeContext
from audiobook_merge.errors import MergeFailure
from audiobook_merge.models import Stage, StageStatus, ToolResult
from audiobook_merge.stages.concat import run


def _ctx(tmp_path, count=2):
    ctx = MergeContext(input_path=tmp_path / "book", output_file=tmp_path / "out" / "book.m4b")
    temp_dir = ctx.ensure_temp_dir()
    for i in range(1, count + 1):
        f = temp_dir / f"00{i}-part-finished.m4b"
        f.write_bytes(f"part{i}".encode())
        ctx.files_to_merge.append(f)
    return ctx


def _config(tmp_path, **kwargs):
    return MergeConfig(_env_file=None, log_dir=tmp_path / "logs", **kwargs)


class TestConcatStage:
    def test_single_file_is_copied(self, tmp_path):
        ctx = _ctx(tmp_path, count=1)
        with patch("audiobook_merge.stages.concat.ffmpeg.concat") as mock_concat:
            run(ctx, _config(tmp_path))
        mock_concat.assert_not_called()
        assert ctx.merged_file == ctx.temp_dir / "tmp_book.m4b"
        assert ctx.merged_file.read_bytes() == b"part1"
        assert ctx.files_to_merge[0].exists()
        assert ctx.stages[Stage.CONCAT] == StageStatus.COMPLETED

    @patch("audiobook_merge.stages.concat.ffmpeg.concat")
    def test_merges_with_listing(self, mock_concat, tmp_path):
        ctx = _ctx(tmp_path)
        listing = ctx.temp_dir / "book.listing.txt"
        seen = {}

        def fake_concat(listing_path, output, fmt, codec):
            seen["listing"] = listing_path.read_text()
            output.write_bytes(b"merged")
            return ToolResult(success=True, produced_path=output)

        mock_concat.side_effect = fake_concat
        run(ctx, _config(tmp_path))

        assert mock_concat.call_args.args[0] == listing
        assert mock_concat.call_args.args[2:] == ("mp4", "aac")
        assert seen["listing"].splitlines() == [
            f"file '{f.resolve()}'" for f in ctx.files_to_merge
        ]
        assert not listing.exists()
        assert ctx.merged_file.read_bytes() == b"merged"

    @patch("audiobook_merge.stages.concat.ffmpeg.concat")
    def test_debug_keeps_listing(self, mock_concat, tmp_path):
        mock_concat.return_value = ToolResult(success=True)
        ctx = _ctx(tmp_path)
        run(ctx, _config(tmp_path, debug=True))
        assert (ctx.temp_dir / "book.listing.txt").exists()

    @patch("audiobook_merge.stages.concat.ffmpeg.concat")
    def test_failure_raises_merge_failure(self, mock_concat, tmp_path):
        mock_concat.return_value = ToolResult(success=False, diagnostic="Impossible to open")
        ctx = _ctx(tmp_path)
        with pytest.raises(MergeFailure, match="Impossible to open"):
            run(ctx, _config(tmp_path))
        assert ctx.merged_file is None

    def test_removes_stale_merged_file(self, tmp_path):
        ctx = _ctx(tmp_path, count=1)
        stale_chapters = ctx.temp_dir / "tmp_book.chapters.txt"
        stale_chapters.write_text("00:00:00.000 Old\n")
        (ctx.temp_dir / "tmp_book.m4b").write_bytes(b"stale")
        run(ctx, _config(tmp_path))
        assert not stale_chapters.exists()
        assert ctx.merged_file.read_bytes() == b"part1"
