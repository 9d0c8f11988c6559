"""Chapters stage -- builds the RAW chapter list and aligns it with MusicBrainz."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click
from loguru import logger

from ..api import musicbrainz
from ..chapters import ChapterHandler
from ..errors import ExternalToolError, MergeFailure, MetadataLookupFailure
from ..ffprobe import duration_to_timestamp, get_duration_ms
from ..models import Chapter, Stage, StageStatus
from ..parsers import parse_mp4chaps

if TYPE_CHECKING:
    from ..config import MergeConfig
    from ..context import MergeContext

log = logger.bind(stage="chapters")


def _align_with_musicbrainz(
    handler: ChapterHandler,
    chapters: list[Chapter],
    mbid: str,
    config: MergeConfig,
) -> list[Chapter]:
    """Take titles from a MusicBrainz release; lookup failures keep RAW chapters."""
    try:
        references = musicbrainz.lookup_chapters(
            mbid,
            base_url=config.musicbrainz_url,
            timeout=config.musicbrainz_timeout,
            user_agent=config.user_agent,
        )
    except MetadataLookupFailure as e:
        log.warning(f"{e} -- keeping chapters built from files")
        click.echo(f"  CHAPTERS: MusicBrainz lookup failed, keeping {len(chapters)} built chapters")
        return chapters

    click.echo(f"  CHAPTERS: aligning with {len(references)} MusicBrainz tracks")
    return handler.normalize(handler.align_with_references(chapters, references))


def run(ctx: MergeContext, config: MergeConfig) -> None:
    """Import chapters.txt, or build one chapter per merged file.

    Durations are measured on the files that are actually merged (the
    converted copies), titles come from the source files.
    """
    ctx.set_stage(Stage.CHAPTERS, StageStatus.RUNNING)

    content = ctx.lookup_sidecar("chapters.txt")
    if content is not None:
        ctx.chapters = parse_mp4chaps(content)
        ctx.chapters_from_sidecar = True
        click.echo(f"  CHAPTERS: imported {len(ctx.chapters)} chapters from chapters.txt")
        ctx.set_stage(Stage.CHAPTERS, StageStatus.COMPLETED)
        return

    entries = []
    for audio, merged_path in zip(ctx.files_to_convert, ctx.files_to_merge):
        try:
            entries.append((audio, get_duration_ms(merged_path)))
        except (ValueError, ExternalToolError) as e:
            raise MergeFailure(f"Could not read duration of {merged_path.name}: {e}") from e

    handler = ChapterHandler.from_config(config)
    chapters = handler.build_from_files(entries)
    if ctx.musicbrainz_id:
        chapters = _align_with_musicbrainz(handler, chapters, ctx.musicbrainz_id, config)

    ctx.chapters = chapters
    total = duration_to_timestamp(chapters[-1].end / 1000) if chapters else "00:00:00"
    click.echo(f"  CHAPTERS: {len(chapters)} chapters from {len(entries)} files, {total}")
    ctx.set_stage(Stage.CHAPTERS, StageStatus.COMPLETED)
