"""Tag stage -- assembles layered tags and writes them into the merged file.

Tag layers, highest precedence first (lower layers only fill empty fields):

    1. command line / batch pattern overrides
    2. metadata.opf
    3. ffmetadata.txt
    4. description.txt
    5. tags of the first input file

Tags, chapters and cover are written in one ``ffmpeg -c copy`` pass via an
FFMETADATA1 file; the chapter list is also written as an mp4chaps sidecar
next to the merged file.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click
from loguru import logger

from .. import ffmpeg
from ..chapters import is_contiguous
from ..errors import FilesystemError, MergeFailure
from ..models import Stage, StageStatus
from ..parsers import format_ffmetadata, format_mp4chaps, parse_ffmetadata
from ..tags import Tag, assemble, parse_opf

if TYPE_CHECKING:
    from ..config import MergeConfig
    from ..context import MergeContext

log = logger.bind(stage="tag")


def collect_layers(ctx: MergeContext) -> list[Tag]:
    """Tag sources in precedence order."""
    layers = [Tag.from_mapping(ctx.overrides)]

    opf = ctx.lookup_sidecar("metadata.opf")
    if opf is not None:
        log.debug("Adding metadata.opf layer")
        layers.append(parse_opf(opf))

    ffmetadata = ctx.lookup_sidecar("ffmetadata.txt")
    if ffmetadata is not None:
        log.debug("Adding ffmetadata.txt layer")
        sidecar_tags, _ = parse_ffmetadata(ffmetadata)
        layers.append(Tag.from_mapping(sidecar_tags))

    description = ctx.lookup_sidecar("description.txt")
    if description is not None and description.strip():
        log.debug("Adding description.txt layer")
        layers.append(Tag(description=description.strip()))

    layers.append(ctx.base_tag)
    return layers


def run(ctx: MergeContext, config: MergeConfig) -> None:
    ctx.set_stage(Stage.TAG, StageStatus.RUNNING)
    merged = ctx.merged_file

    tag = assemble(collect_layers(ctx))
    tag.chapters = list(ctx.chapters)
    tag.cover = ctx.cover
    if tag.chapters and not is_contiguous(tag.chapters):
        log.warning(f"Chapters of {merged.name} do not start at 0 or leave gaps")

    metadata_file = ctx.temp_dir / f"{ctx.output_file.stem}.ffmetadata.txt"
    chapters_file = ctx.chapters_file_for(merged)
    try:
        metadata_file.write_text(format_ffmetadata(tag.to_ffmetadata_tags(), tag.chapters), encoding="utf-8")
        chapters_file.write_text(format_mp4chaps(tag.chapters), encoding="utf-8")
    except OSError as e:
        raise FilesystemError(f"Could not write metadata for {merged.name}: {e}") from e

    tagged = merged.with_name(f"{merged.stem}.tagged{merged.suffix}")
    result = ffmpeg.write_tags(merged, metadata_file, tagged, ctx.format, tag.cover)
    if not result.success:
        raise MergeFailure(f"Could not tag {merged.name}: {result.diagnostic[-500:]}")

    try:
        tagged.replace(merged)
        if not config.debug:
            metadata_file.unlink(missing_ok=True)
    except OSError as e:
        raise FilesystemError(f"Could not replace {merged.name} with tagged file: {e}") from e

    ctx.tag = tag
    click.echo(
        f"  TAG: {tag.artist or '-'} - {tag.title or '-'} "
        f"({len(tag.chapters)} chapters{', cover' if tag.cover else ''})"
    )
    ctx.set_stage(Stage.TAG, StageStatus.COMPLETED)
