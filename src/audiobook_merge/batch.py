"""Batch job derivation -- directory discovery, pattern matching, job building.

A batch pattern is a path template such as ``input/%a/%s/%p - %n`` whose
placeholders (see ``models.PLACEHOLDER_TAGS``) capture the text of a path
segment, or of a substring up to the next literal. Each leaf directory under
the batch root is matched against the pattern once; a match yields the tag
values and the derived output file for that directory.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

import click
from loguru import logger

from .models import PLACEHOLDER_TAGS, BatchJob, BatchMatch
from .sanitize import sanitize_filename

log = logger.bind(stage="batch")

_TOKEN_RE = re.compile(r"%(%|[A-Za-z])")


def normalize_directory(directory: str | Path) -> str:
    """Use forward slashes and strip trailing separators."""
    return str(directory).replace("\\", "/").rstrip("/")


def load_batch_directories(
    root: Path,
    extensions: frozenset[str],
    exclude: set[Path] | frozenset[Path] = frozenset(),
) -> list[Path]:
    """Find leaf directories under root that contain qualifying files.

    A directory qualifies when it holds at least one file whose extension
    is in ``extensions`` and none of its descendants qualify. Directories
    in ``exclude`` (already processed by an earlier pattern) are skipped.
    Sorted lexically for deterministic batch ordering.
    """
    log.debug(f"load_batch_directories(root={root}, extensions={sorted(extensions)})")

    with_files: set[Path] = set()
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        if any(
            Path(f).suffix.lstrip(".").lower() in extensions for f in filenames
        ):
            with_files.add(Path(dirpath))

    # A parent of a qualifying directory is not a leaf
    parents: set[Path] = set()
    for d in with_files:
        parents.update(d.parents)

    excluded = {Path(e) for e in exclude}
    leaves = [d for d in with_files if d not in parents and d not in excluded]
    return sorted(leaves, key=lambda d: normalize_directory(d))


class BatchPattern:
    """A batch pattern compiled once into literals and named captures."""

    def __init__(self, pattern: str) -> None:
        self.pattern = normalize_directory(pattern)
        # Alternating tokens: ("lit", text) or ("ph", letter)
        self.tokens: list[tuple[str, str]] = []
        pos = 0
        for m in _TOKEN_RE.finditer(self.pattern):
            if m.start() > pos:
                self._add_literal(self.pattern[pos:m.start()])
            if m.group(1) == "%":
                self._add_literal("%")
            else:
                self.tokens.append(("ph", m.group(1)))
            pos = m.end()
        if pos < len(self.pattern):
            self._add_literal(self.pattern[pos:])

        self.placeholders = [v for kind, v in self.tokens if kind == "ph"]
        self._regex = re.compile(self._build_regex())

    def _add_literal(self, text: str) -> None:
        if self.tokens and self.tokens[-1][0] == "lit":
            self.tokens[-1] = ("lit", self.tokens[-1][1] + text)
        else:
            self.tokens.append(("lit", text))

    def _build_regex(self) -> str:
        parts = ["(?:^|/)"] if not self.pattern.startswith("/") else ["^"]
        seen: set[str] = set()
        last_ph = max(
            (i for i, (kind, _) in enumerate(self.tokens) if kind == "ph"),
            default=-1,
        )
        for i, (kind, value) in enumerate(self.tokens):
            if kind == "lit":
                parts.append(re.escape(value))
                continue
            if value in seen:
                parts.append(f"(?P={self._group(value)})")
                continue
            seen.add(value)
            # Lazy up to the next literal; the final capture takes the rest
            capture = "[^/]+" if i == last_ph else "[^/]+?"
            parts.append(f"(?P<{self._group(value)}>{capture})")
        parts.append("$")
        return "".join(parts)

    @staticmethod
    def _group(letter: str) -> str:
        # Group names are case sensitive but must be identifiers
        return f"{'u' if letter.isupper() else 'l'}_{letter}"

    @property
    def literal_prefix(self) -> str:
        """Literal text before the first placeholder."""
        if self.tokens and self.tokens[0][0] == "lit":
            return self.tokens[0][1]
        return ""

    def match(self, directory: str | Path) -> BatchMatch | None:
        """Match a directory path suffix, returning placeholder values."""
        path = normalize_directory(directory)
        m = self._regex.search(path)
        if m is None:
            return None
        fields = {
            letter: m.group(self._group(letter)).strip()
            for letter in dict.fromkeys(self.placeholders)
        }
        return BatchMatch(directory=Path(directory), fields=MappingProxyType(fields))

    def format(self, fields: Mapping[str, str], trim_prefix: bool = True) -> str:
        """Render the pattern with matched values, sanitizing each segment."""
        tokens = self.tokens
        if trim_prefix and self.literal_prefix:
            tokens = tokens[1:]
        rendered = "".join(
            fields.get(value, "") if kind == "ph" else value
            for kind, value in tokens
        )
        segments = [
            sanitize_filename(s) for s in rendered.split("/") if s.strip()
        ]
        return "/".join(s for s in segments if s)


@dataclass
class BatchContext:
    """State threaded through successive batch patterns of one run."""

    root: Path
    output_dir: Path
    extensions: frozenset[str]
    overrides: Mapping[str, str] = field(default_factory=dict)
    processed: set[Path] = field(default_factory=set)
    claimed_outputs: dict[Path, Path] = field(default_factory=dict)


def derive_output_file(output_dir: Path, pattern: BatchPattern, match: BatchMatch) -> Path:
    """Build the destination for a matched directory.

    Title (fallback album) becomes an extra path segment unless the match
    carries a series, in which case the pattern already names the file.
    """
    file_part = pattern.format(match.fields)
    name = match.value("n") or match.value("m")
    if name and not match.value("s"):
        file_part = f"{file_part}/{sanitize_filename(name)}" if file_part else sanitize_filename(name)
    if not file_part:
        file_part = sanitize_filename(match.directory.name)
    return output_dir / f"{file_part}.m4b"


def derive_jobs(
    ctx: BatchContext,
    pattern_str: str,
    dry_run: bool = False,
) -> list[BatchJob]:
    """Derive merge jobs for every leaf directory matching the pattern.

    Matched directories are recorded in ``ctx.processed`` so later patterns
    skip them. A derived output path already claimed by an earlier match is
    skipped with a warning (first match wins). In dry-run mode matches are
    reported but no jobs are returned.
    """
    pattern = BatchPattern(pattern_str)
    candidates = load_batch_directories(ctx.root, ctx.extensions, ctx.processed)

    matches: list[BatchMatch] = []
    for directory in candidates:
        match = pattern.match(directory)
        if match is None:
            log.debug(f"No match: {directory}")
            continue
        matches.append(match)
        ctx.processed.add(directory)

    count = len(matches)
    click.echo(f"{count} match{'' if count == 1 else 'es'} for pattern {pattern_str}")
    if matches:
        click.echo("================================")

    jobs: list[BatchJob] = []
    for match in matches:
        output_file = derive_output_file(ctx.output_dir, pattern, match)

        click.echo(f"merge {match.directory}")
        click.echo(f"  =>  {output_file}")
        tags = dict(match.tags)
        for name, value in tags.items():
            click.echo(f"- {name}: {value}")
        click.echo("================================")

        claimed_by = ctx.claimed_outputs.get(output_file)
        if claimed_by is not None:
            log.warning(
                f"Output collision: {match.directory} derives {output_file}, "
                f"already claimed by {claimed_by} -- skipping"
            )
            click.echo(f"  SKIP: output already claimed by {claimed_by}")
            continue
        ctx.claimed_outputs[output_file] = match.directory

        if dry_run:
            continue

        # Explicit overrides always beat placeholder values
        merged = {**tags, **{k: v for k, v in ctx.overrides.items() if v}}
        jobs.append(
            BatchJob(
                input_dir=match.directory,
                output_file=output_file,
                tag_overrides=MappingProxyType(merged),
            )
        )

    return jobs
