"""Convert stage -- encodes every input file through the bounded TaskPool."""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING

import click
import psutil
from loguru import logger

from .. import ffmpeg
from ..concurrency import Task, TaskPool
from ..errors import ConversionFailure, InputValidationError
from ..models import EXTENSION_FORMAT, ConversionJob, PoolSnapshot, Stage, StageStatus, ToolResult

if TYPE_CHECKING:
    from ..config import MergeConfig
    from ..context import MergeContext

log = logger.bind(stage="convert")


class ConversionTask(Task):
    """Converts one source file by delegating to the ffmpeg encoder."""

    def __init__(self, job: ConversionJob) -> None:
        super().__init__()
        self.job = job

    def run(self) -> ToolResult:
        return ffmpeg.convert(self.job)

    def describe(self) -> str:
        return f"convert {self.job.source.name}"


class ProgressPrinter:
    """Renders pool snapshots as a single refreshing status line."""

    def __init__(self) -> None:
        self._spinner = itertools.cycle("|/-\\")

    def __call__(self, snapshot: PoolSnapshot) -> None:
        # interval=None compares against the previous call, never blocks the poll loop
        cpu_load = psutil.cpu_percent(interval=None)
        status = (
            f"{snapshot.remaining:4d} remaining / {snapshot.total:4d} total "
            f"[CPU: {cpu_load:.0f}%] {next(self._spinner)}"
        )
        click.echo(f"\r{status}", nl=False)


def build_jobs(ctx: MergeContext, config: MergeConfig) -> list[ConversionJob]:
    """One ConversionJob per input file, numbered to keep merge order."""
    temp_dir = ctx.temp_dir
    width = max(3, len(str(len(ctx.files_to_convert))))
    jobs = []
    for index, audio in enumerate(ctx.files_to_convert, start=1):
        name = f"{index:0{width}d}-{audio.path.stem}-finished.{ctx.extension}"
        jobs.append(
            ConversionJob(
                source=audio.path,
                destination=temp_dir / name,
                temp_dir=temp_dir,
                extension=ctx.extension,
                codec=ctx.codec,
                format=ctx.format,
                channels=config.audio_channels,
                sample_rate=config.audio_samplerate,
                bit_rate=config.audio_bitrate,
                profile=config.audio_profile,
                force=config.force,
            )
        )
    return jobs


def _prepare_without_conversion(ctx: MergeContext, config: MergeConfig) -> None:
    """Merge the source files as they are."""
    extensions = sorted({audio.extension for audio in ctx.files_to_convert})
    if len(extensions) > 1 and not config.force:
        raise InputValidationError(
            f"--no-conversion needs files of one type, found: {', '.join(extensions)} "
            "(use --force to merge anyway)"
        )
    ctx.format = EXTENSION_FORMAT.get(extensions[0], ctx.format)
    # Source codec is unknown, never suppress the format flag
    ctx.codec = ""
    ctx.files_to_merge = [audio.path for audio in ctx.files_to_convert]
    click.echo(f"  CONVERT: skipped, merging {len(ctx.files_to_merge)} {extensions[0]} files as-is")


def run(ctx: MergeContext, config: MergeConfig) -> None:
    """Convert all input files into the temp dir.

    After the pool finishes, every destination is checked: a missing or
    empty file is deleted and raises ConversionFailure. Failed conversions
    are never retried.
    """
    ctx.set_stage(Stage.CONVERT, StageStatus.RUNNING)

    if config.no_conversion:
        _prepare_without_conversion(ctx, config)
        ctx.set_stage(Stage.CONVERT, StageStatus.COMPLETED)
        return

    ctx.ensure_temp_dir()
    pool = TaskPool(
        max_parallel=config.jobs,
        poll_interval=config.poll_interval,
        progress_every=config.progress_every,
    )
    jobs = build_jobs(ctx, config)
    for job in jobs:
        pool.submit(ConversionTask(job))

    click.echo(
        f"  CONVERT: {len(jobs)} files to {ctx.extension} "
        f"({ctx.codec}, {config.jobs} simultaneous job(s))"
    )
    pool.process(ProgressPrinter())
    click.echo("")  # Clear status line

    for task in pool.tasks:
        destination = task.job.destination
        if destination.is_file() and destination.stat().st_size > 0:
            continue
        destination.unlink(missing_ok=True)
        detail = task.result.diagnostic if task.result else str(task.error or "")
        raise ConversionFailure(
            f"Could not convert {task.job.source} to {destination.name}: {detail[-500:]}"
        )

    ctx.files_to_merge = [job.destination for job in jobs]
    log.info(f"Converted {len(jobs)} files")
    ctx.set_stage(Stage.CONVERT, StageStatus.COMPLETED)
