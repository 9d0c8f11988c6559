"""Finalize stage -- moves the tagged merged file and its chapters into place."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import click
from loguru import logger

from ..errors import FilesystemError
from ..models import Stage, StageStatus

if TYPE_CHECKING:
    from ..config import MergeConfig
    from ..context import MergeContext

log = logger.bind(stage="finalize")


def run(ctx: MergeContext, config: MergeConfig) -> None:
    """Rename temp merged file (and chapter sidecar) to the destination.

    The temp dir lives next to the destination, so ``os.replace`` is an
    atomic same-filesystem rename that also overwrites a forced destination.
    """
    ctx.set_stage(Stage.FINALIZE, StageStatus.RUNNING)
    merged = ctx.merged_file
    destination = ctx.output_file

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        os.replace(merged, destination)
        chapters_file = ctx.chapters_file_for(merged)
        if chapters_file.is_file():
            os.replace(chapters_file, ctx.chapters_file_for(destination))
    except OSError as e:
        raise FilesystemError(f"Could not move {merged.name} to {destination}: {e}") from e

    log.info(f"Moved {merged.name} -> {destination}")
    click.echo(f"  FINALIZE: {destination}")
    ctx.set_stage(Stage.FINALIZE, StageStatus.COMPLETED)
