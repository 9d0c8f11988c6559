"""Adjust stage -- splits overlong chapters and fits chapters to the merged file."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click
from loguru import logger

from .. import ffmpeg
from ..chapters import ChapterHandler, fit_to_length
from ..errors import ExternalToolError
from ..ffprobe import get_duration_ms
from ..models import Stage, StageStatus
from ..parsers import parse_silences

if TYPE_CHECKING:
    from ..config import MergeConfig
    from ..context import MergeContext

log = logger.bind(stage="adjust")


def run(ctx: MergeContext, config: MergeConfig) -> None:
    """Fit chapters to the merged file, split those longer than the max
    length at silences, then fit again.

    Silence detection runs once over the merged file. A failed detection
    only disables splitting.
    """
    ctx.set_stage(Stage.ADJUST, StageStatus.RUNNING)
    merged = ctx.merged_file

    try:
        total = get_duration_ms(merged)
    except (ValueError, ExternalToolError) as e:
        log.warning(f"Could not measure {merged.name}, keeping chapter ends: {e}")
        total = None
    # An open last chapter (chapters.txt) only shows its length once fitted
    if total is not None:
        ctx.chapters = fit_to_length(ctx.chapters, total)

    desired, maximum = config.chapter_lengths()
    if maximum > 0 and ctx.chapters:
        click.echo(f"  ADJUST: detecting silences (max chapter length {maximum // 1000}s)")
        result = ffmpeg.detect_silences(merged, config.silence_noise_db, config.silence_min_length)
        if result.success:
            silences = parse_silences(result.diagnostic)
        else:
            log.warning(f"Silence detection failed for {merged.name}, not splitting chapters")
            silences = []
        before = len(ctx.chapters)
        ctx.chapters = ChapterHandler.from_config(config).adjust(ctx.chapters, silences, desired, maximum)
        click.echo(f"  ADJUST: {before} -> {len(ctx.chapters)} chapters ({len(silences)} silences)")

    if total is not None:
        ctx.chapters = fit_to_length(ctx.chapters, total)

    ctx.set_stage(Stage.ADJUST, StageStatus.COMPLETED)
