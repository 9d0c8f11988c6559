"""Load stage -- collects the input files of one merge and their baseline tags."""

from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

import click
from loguru import logger

from .. import ffmpeg
from ..errors import ExistingOutputError
from ..ffprobe import get_tags, has_attached_picture
from ..models import AudioFile, Stage, StageStatus
from ..tags import from_first_file

if TYPE_CHECKING:
    from ..config import MergeConfig
    from ..context import MergeContext

log = logger.bind(stage="load")

COVER_NAMES = ("cover.jpg", "cover.jpeg", "cover.png", "folder.jpg")


def _natural_sort_key(p: Path) -> list:
    """Extract numeric/text parts for natural sorting of paths."""
    return [
        int(c) if c.isdigit() else c.lower()
        for part in p.parts
        for c in re.split(r"(\d+)", part)
    ]


def load_input_files(
    inputs: Iterable[Path],
    extensions: frozenset[str],
) -> tuple[list[Path], list[tuple[Path, str]]]:
    """Expand input files and directories into the files to merge.

    Directories are searched recursively and their content sorted
    naturally ("2.mp3" before "10.mp3"); explicitly named files keep the
    order they were given in. Returns (files, skipped) where skipped holds
    (path, reason) pairs.
    """
    files: list[Path] = []
    skipped: list[tuple[Path, str]] = []
    seen: set[Path] = set()

    def _add(f: Path) -> None:
        if f.suffix.lstrip(".").lower() not in extensions:
            skipped.append((f, "extension not included"))
        elif f in seen:
            skipped.append((f, "duplicate"))
        else:
            seen.add(f)
            files.append(f)

    for path in inputs:
        if path.is_dir():
            found = [f for f in path.rglob("*") if f.is_file()]
            found.sort(key=lambda f: _natural_sort_key(f.relative_to(path)))
            for f in found:
                _add(f)
        elif path.is_file():
            _add(path)
        else:
            skipped.append((path, "does not exist"))
    return files, skipped


def _find_cover(ctx: MergeContext, first_file: Path, dry_run: bool) -> tuple[Path | None, bool]:
    """Locate cover art next to the input or extract it from the first file.

    Returns (cover_path, extracted).
    """
    for name in COVER_NAMES:
        candidate = ctx.sidecar_dir / name
        if candidate.is_file():
            log.debug(f"Using cover {candidate}")
            return candidate, False

    if dry_run or not has_attached_picture(first_file):
        return None, False

    target = ctx.ensure_temp_dir() / "cover.jpg"
    result = ffmpeg.extract_cover(first_file, target)
    if not result.success:
        log.warning(f"Could not extract cover from {first_file.name}: {result.diagnostic}")
        return None, False
    log.debug(f"Extracted cover from {first_file.name}")
    return target, True


def run(ctx: MergeContext, config: MergeConfig) -> None:
    """Collect input files, read their tags, locate the cover.

    Raises ExistingOutputError when the destination exists and force is
    off. An empty input leaves ``ctx.files_to_convert`` empty; the runner
    stops the merge there.
    """
    ctx.set_stage(Stage.LOAD, StageStatus.RUNNING)

    if ctx.output_file.exists() and not config.force:
        raise ExistingOutputError(
            f"Output file {ctx.output_file} already exists - use --force to overwrite"
        )

    files, skipped = load_input_files([ctx.input_path, *ctx.more_inputs], config.extensions)
    for path, reason in skipped:
        if reason == "does not exist" or config.verbose:
            click.echo(f"  skipping {path.name} ({reason})")
        log.debug(f"Skipped {path}: {reason}")

    if not files:
        log.warning(f"No audio files found in {ctx.input_path}")
        ctx.set_stage(Stage.LOAD, StageStatus.COMPLETED)
        return

    ctx.files_to_convert = [AudioFile(path=f, tags=get_tags(f)) for f in files]
    ctx.base_tag = from_first_file(ctx.files_to_convert[0].tags)
    ctx.cover, ctx.extracted_cover = _find_cover(ctx, files[0], config.dry_run)

    click.echo(f"  LOAD: {len(files)} files, {len(skipped)} skipped")
    ctx.set_stage(Stage.LOAD, StageStatus.COMPLETED)
