"""Per-merge state shared by the stages of one merge run.

A fresh MergeContext is created for every merge (every batch directory)
and discarded afterwards; nothing carries over between merges.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from loguru import logger

from .errors import FilesystemError
from .models import AudioFile, Chapter, Stage, StageStatus
from .tags import Tag

log = logger.bind(stage="context")


@dataclass
class MergeContext:
    input_path: Path
    output_file: Path
    more_inputs: list[Path] = field(default_factory=list)
    overrides: Mapping[str, str] = field(default_factory=dict)
    musicbrainz_id: str = ""
    batch: bool = False

    # Resolved output encoding
    extension: str = "m4b"
    format: str = "mp4"
    codec: str = "aac"

    files_to_convert: list[AudioFile] = field(default_factory=list)
    files_to_merge: list[Path] = field(default_factory=list)
    base_tag: Tag = field(default_factory=Tag)
    cover: Path | None = None
    extracted_cover: bool = False
    merged_file: Path | None = None
    chapters: list[Chapter] = field(default_factory=list)
    chapters_from_sidecar: bool = False
    tag: Tag | None = None
    stages: dict[Stage, StageStatus] = field(
        default_factory=lambda: {stage: StageStatus.PENDING for stage in Stage}
    )

    def set_stage(self, stage: Stage, status: StageStatus) -> None:
        log.debug(f"Stage {stage.value} -> {status}")
        self.stages[stage] = status

    @property
    def sidecar_dir(self) -> Path:
        """Directory searched for chapters.txt, metadata.opf and friends."""
        return self.input_path if self.input_path.is_dir() else self.input_path.parent

    def lookup_sidecar(self, name: str) -> str | None:
        """Read a sidecar file next to the input, or None if absent."""
        path = self.sidecar_dir / name
        if not path.is_file():
            return None
        log.debug(f"Reading sidecar {path}")
        return path.read_text(encoding="utf-8", errors="replace")

    @property
    def temp_dir(self) -> Path:
        return self.output_file.parent / f"{self.output_file.stem}-tmpfiles"

    def ensure_temp_dir(self) -> Path:
        try:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Could not create temp directory {self.temp_dir}: {e}") from e
        return self.temp_dir

    @staticmethod
    def chapters_file_for(audio_file: Path) -> Path:
        """Chapter sidecar belonging to an audio file."""
        return audio_file.with_name(f"{audio_file.stem}.chapters.txt")
