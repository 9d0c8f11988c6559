"""Concat stage -- stream-copies the converted files into one merged file.

A single file is copied as-is; otherwise an ffmpeg concat demuxer listing
(absolute, quoted paths in merge order) is written to the temp dir and
merged with ``-c copy``.
"""

from __future__ import annotations

import shutil
from typing import TYPE_CHECKING

import click
from loguru import logger

from .. import ffmpeg
from ..errors import FilesystemError, MergeFailure
from ..models import Stage, StageStatus

if TYPE_CHECKING:
    from ..config import MergeConfig
    from ..context import MergeContext

log = logger.bind(stage="concat")


def run(ctx: MergeContext, config: MergeConfig) -> None:
    ctx.set_stage(Stage.CONCAT, StageStatus.RUNNING)

    temp_dir = ctx.ensure_temp_dir()
    merged = temp_dir / f"tmp_{ctx.output_file.name}"
    try:
        merged.unlink(missing_ok=True)
        ctx.chapters_file_for(merged).unlink(missing_ok=True)
    except OSError as e:
        raise FilesystemError(f"Could not remove stale {merged}: {e}") from e

    if len(ctx.files_to_merge) == 1:
        source = ctx.files_to_merge[0]
        try:
            shutil.copy2(source, merged)
        except OSError as e:
            raise FilesystemError(f"Could not copy {source} to {merged}: {e}") from e
        ctx.merged_file = merged
        click.echo(f"  CONCAT: single file, copied {source.name}")
        ctx.set_stage(Stage.CONCAT, StageStatus.COMPLETED)
        return

    listing = temp_dir / f"{ctx.output_file.stem}.listing.txt"
    ffmpeg.write_listing(ctx.files_to_merge, listing)
    log.debug(f"Wrote {len(ctx.files_to_merge)} entries to {listing.name}")

    result = ffmpeg.concat(listing, merged, ctx.format, ctx.codec)
    if not result.success:
        raise MergeFailure(f"Could not merge {len(ctx.files_to_merge)} files to {merged}: {result.diagnostic[-500:]}")

    if not config.debug:
        listing.unlink(missing_ok=True)

    ctx.merged_file = merged
    click.echo(f"  CONCAT: merged {len(ctx.files_to_merge)} files")
    ctx.set_stage(Stage.CONCAT, StageStatus.COMPLETED)
