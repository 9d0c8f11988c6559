"""Merge runner -- validates inputs and drives the stages in single or batch mode."""

from __future__ import annotations

import gc
from pathlib import Path
from typing import Mapping, Sequence

import click
from loguru import logger

from .batch import BatchContext, derive_jobs
from .config import MergeConfig
from .context import MergeContext
from .errors import ExistingOutputError, InputValidationError, MergeError
from .models import STAGE_ORDER, BatchResult, Stage, StageStatus
from .stages import get_stage_runner

log = logger.bind(stage="runner")


class MergeRunner:
    """Runs one merge per input set, or one merge per matched batch directory."""

    def __init__(
        self,
        config: MergeConfig,
        overrides: Mapping[str, str] | None = None,
        musicbrainz_id: str = "",
    ) -> None:
        self.config = config
        self.overrides = {k: v for k, v in (overrides or {}).items() if v}
        self.musicbrainz_id = musicbrainz_id

    def run(
        self,
        inputs: Sequence[Path],
        output: Path,
        batch_patterns: Sequence[str] = (),
    ) -> BatchResult | None:
        """Validate the command and run single or batch mode.

        Single mode lets MergeError propagate to the caller; batch mode
        returns a BatchResult summary.
        """
        self.validate(inputs, output, batch_patterns)
        if batch_patterns:
            return self.run_batch(inputs[0], output, batch_patterns)
        self.merge(inputs[0], output, more_inputs=list(inputs[1:]), overrides=self.overrides)
        return None

    def validate(self, inputs: Sequence[Path], output: Path, batch_patterns: Sequence[str]) -> None:
        if not inputs:
            raise InputValidationError("No input files or directories given")
        if batch_patterns:
            if len(inputs) != 1 or not inputs[0].is_dir():
                raise InputValidationError(
                    "Batch mode needs exactly one existing input directory"
                )
            if output.is_file():
                raise InputValidationError(
                    f"Batch mode needs an output directory, {output} is a file"
                )
        else:
            if self.config.dry_run:
                raise InputValidationError("--dry-run only works with --batch-pattern")
            if output.is_dir():
                raise InputValidationError(
                    f"Output {output} is a directory, expected a file"
                )

    def run_batch(self, root: Path, output_dir: Path, patterns: Sequence[str]) -> BatchResult:
        """Derive jobs for every pattern, then merge the directories one by one.

        A failing directory is logged and the batch continues.
        """
        batch_ctx = BatchContext(
            root=root,
            output_dir=output_dir,
            extensions=self.config.extensions,
            overrides=self.overrides,
        )
        jobs = []
        for pattern in patterns:
            jobs.extend(derive_jobs(batch_ctx, pattern, dry_run=self.config.dry_run))

        if self.config.dry_run:
            click.echo("[DRY-RUN] No changes will be made")
            return BatchResult(total=0)

        result = BatchResult(total=len(jobs))
        click.echo(f"Batch merge: {len(jobs)} directories in {root}")
        for job in jobs:
            click.echo(f"\nprocessing {job.input_dir}")
            try:
                self.merge(
                    job.input_dir,
                    job.output_file,
                    overrides=job.tag_overrides,
                    batch=True,
                )
                result.completed += 1
            except ExistingOutputError as e:
                result.skipped += 1
                click.echo(f"  SKIP: {e}")
            except MergeError as e:
                result.failed += 1
                log.error(f"processing failed for {job.input_dir}: {e}")
                click.echo(f"  ERROR: processing failed for {job.input_dir}: {e}")
            except Exception as e:
                result.failed += 1
                log.exception(f"processing failed for {job.input_dir}: {e}")
                click.echo(f"  ERROR: processing failed for {job.input_dir}: {e}")
            finally:
                # Per-directory tag/chapter data must not pile up over long batches
                gc.collect()

        click.echo(
            f"\nBatch complete: {result.completed}/{result.total} succeeded, "
            f"{result.failed} failed, {result.skipped} skipped"
        )
        if result.failed:
            log.warning(f"Batch had {result.failed} failures out of {result.total}")
        return result

    def merge(
        self,
        input_path: Path,
        output_file: Path,
        more_inputs: list[Path] | None = None,
        overrides: Mapping[str, str] | None = None,
        batch: bool = False,
    ) -> MergeContext:
        """Run every stage for one output file."""
        ctx = MergeContext(
            input_path=input_path,
            output_file=output_file,
            more_inputs=more_inputs or [],
            overrides=overrides or {},
            musicbrainz_id=self.musicbrainz_id,
            batch=batch,
        )
        ctx.extension, ctx.format, ctx.codec = self.config.output_format(output_file)
        log.debug(
            f"Merging {input_path} -> {output_file} "
            f"(ext={ctx.extension}, format={ctx.format}, codec={ctx.codec})"
        )

        for stage in STAGE_ORDER:
            if stage != Stage.LOAD and not ctx.files_to_convert:
                click.echo(f"  no audio files found in {input_path}, nothing to merge")
                return ctx
            stage_runner = get_stage_runner(stage)
            try:
                stage_runner(ctx, self.config)
            except Exception:
                ctx.set_stage(stage, StageStatus.FAILED)
                raise

        click.echo(f"successfully merged {len(ctx.files_to_merge)} files to {output_file}")
        return ctx
