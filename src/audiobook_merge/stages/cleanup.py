"""Cleanup stage -- removes temporary artifacts after a successful merge."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from ..models import Stage, StageStatus

if TYPE_CHECKING:
    from ..config import MergeConfig
    from ..context import MergeContext

log = logger.bind(stage="cleanup")


def run(ctx: MergeContext, config: MergeConfig) -> None:
    """Delete converted files, an extracted cover and the empty temp dir.

    Source files are never touched (no-conversion mode merges them
    directly). A non-empty temp dir is kept. Failures only log a warning,
    the destination already exists at this point.
    """
    if config.debug:
        log.info(f"Debug mode, keeping temp files in {ctx.temp_dir}")
        ctx.set_stage(Stage.CLEANUP, StageStatus.COMPLETED)
        return

    temp_files = [] if config.no_conversion else list(ctx.files_to_merge)
    if ctx.extracted_cover and ctx.cover is not None:
        temp_files.append(ctx.cover)

    try:
        for f in temp_files:
            f.unlink(missing_ok=True)
        temp_dir = ctx.temp_dir
        if temp_dir.is_dir():
            if any(temp_dir.iterdir()):
                log.info(f"Temp dir {temp_dir} not empty, keeping it")
            else:
                temp_dir.rmdir()
                log.debug(f"Removed temp dir: {temp_dir}")
    except OSError as e:
        log.warning(f"Could not delete temporary files: {e}")

    ctx.set_stage(Stage.CLEANUP, StageStatus.COMPLETED)
