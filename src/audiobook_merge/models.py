"""Core enums, constants, and value types for the audiobook merger.

Enums:
    Stage       -- Individual merge stage (load through cleanup).
    StageStatus -- Stage execution state (pending, running, completed, failed).
    TaskStatus  -- Task pool lifecycle (queued, running, succeeded, failed).

Value types:
    AudioFile, Chapter, Silence, ChapterReference -- chapter synthesis inputs/outputs
    ConversionJob, ToolResult                     -- encoder contract
    BatchMatch, BatchJob                          -- batch job derivation
    PoolSnapshot                                  -- task pool progress
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType
from typing import Mapping


class Stage(StrEnum):
    LOAD = "load"
    CONVERT = "convert"
    CHAPTERS = "chapters"
    CONCAT = "concat"
    ADJUST = "adjust"
    TAG = "tag"
    FINALIZE = "finalize"
    CLEANUP = "cleanup"


class StageStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Stages in execution order for a single merge
STAGE_ORDER: list[Stage] = [
    Stage.LOAD,
    Stage.CONVERT,
    Stage.CHAPTERS,
    Stage.CONCAT,
    Stage.ADJUST,
    Stage.TAG,
    Stage.FINALIZE,
    Stage.CLEANUP,
]

DEFAULT_INCLUDE_EXTENSIONS = "aac,alac,flac,m4a,m4b,mp3,oga,ogg,wav,wma,mp4"

# Output extension -> ffmpeg container format
EXTENSION_FORMAT: dict[str, str] = {
    "m4b": "mp4",
    "m4a": "mp4",
    "mp4": "mp4",
    "aac": "adts",
    "mp3": "mp3",
    "oga": "ogg",
    "ogg": "ogg",
    "flac": "flac",
    "wav": "wav",
}

# Container format -> default audio codec
FORMAT_CODEC: dict[str, str] = {
    "mp4": "aac",
    "adts": "aac",
    "mp3": "libmp3lame",
    "ogg": "libvorbis",
    "flac": "flac",
    "wav": "pcm_s16le",
}

# ALAC in mp4 works but ffmpeg refuses to call it compliant with -f mp4
CODEC_ALAC = "alac"

# Batch pattern placeholder letter -> tag field
PLACEHOLDER_TAGS: dict[str, str] = {
    "n": "title",
    "N": "sort_title",
    "m": "album",
    "M": "sort_album",
    "a": "artist",
    "A": "sort_artist",
    "g": "genre",
    "w": "writer",
    "t": "album_artist",
    "y": "year",
    "d": "description",
    "D": "long_description",
    "c": "comment",
    "C": "copyright",
    "e": "encoded_by",
    "s": "series",
    "p": "series_part",
}


@dataclass(frozen=True)
class AudioFile:
    """An input audio file. Read-only."""

    path: Path
    duration: float | None = None
    tags: Mapping[str, str] = field(default_factory=dict)

    @property
    def extension(self) -> str:
        return self.path.suffix.lstrip(".").lower()


@dataclass
class Chapter:
    """Titled time span within the merged track. Offsets in milliseconds."""

    start: int
    length: int
    title: str = ""

    @property
    def end(self) -> int:
        return self.start + self.length


@dataclass(frozen=True)
class Silence:
    """Detected low-amplitude interval in the merged stream (milliseconds)."""

    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length

    @property
    def midpoint(self) -> int:
        return self.start + self.length // 2


@dataclass(frozen=True)
class ChapterReference:
    """One track of an externally retrieved chapter reference list."""

    title: str
    length: int = 0


@dataclass(frozen=True)
class ConversionJob:
    """Parameters for converting one source file."""

    source: Path
    destination: Path
    temp_dir: Path
    extension: str
    codec: str
    format: str
    channels: int = 0
    sample_rate: int = 0
    bit_rate: str = ""
    profile: str = ""
    force: bool = False

    @property
    def working_file(self) -> Path:
        """Partial output written while the encoder runs."""
        name = self.destination.name.replace("-finished.", "-converting.")
        return self.destination.with_name(name)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one external tool invocation."""

    success: bool
    produced_path: Path | None = None
    diagnostic: str = ""


@dataclass(frozen=True)
class BatchMatch:
    """A directory whose path matched a batch pattern."""

    directory: Path
    fields: Mapping[str, str]

    def value(self, placeholder: str) -> str:
        return self.fields.get(placeholder, "")

    @property
    def tags(self) -> dict[str, str]:
        """Non-empty matched values keyed by tag field name."""
        return {
            PLACEHOLDER_TAGS[key]: val
            for key, val in self.fields.items()
            if val and key in PLACEHOLDER_TAGS
        }


@dataclass(frozen=True)
class BatchJob:
    """Immutable per-directory merge job."""

    input_dir: Path
    output_file: Path
    tag_overrides: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )


@dataclass(frozen=True)
class PoolSnapshot:
    """Task pool state handed to progress callbacks."""

    queued: int
    running: int
    finished: int
    total: int

    @property
    def remaining(self) -> int:
        return self.queued + self.running


@dataclass
class BatchResult:
    """Result summary from a batch merge run."""

    completed: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
