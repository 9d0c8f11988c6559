"""Merge configuration via pydantic-settings (.env + env vars)."""

import sys
from pathlib import Path

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import InputValidationError
from .models import (
    DEFAULT_INCLUDE_EXTENSIONS,
    EXTENSION_FORMAT,
    FORMAT_CODEC,
)

DEFAULT_CHAPTER_PATTERN = r"^[^:]+[1-9][0-9]*:\s*(.*),.*[1-9][0-9]*\s*$"


class MergeConfig(BaseSettings):
    """All merge configuration with layered resolution:
    .env file < environment variables < constructor kwargs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -- Behavior --
    dry_run: bool = False
    force: bool = False
    debug: bool = False
    no_conversion: bool = False
    verbose: bool = False
    log_level: str = "INFO"
    log_dir: Path = Path.home() / ".cache" / "audiobook-merge" / "logs"

    # -- Inputs --
    include_extensions: str = DEFAULT_INCLUDE_EXTENSIONS

    # -- Conversion --
    jobs: int = 1
    poll_interval: float = 0.1
    progress_every: int = 4
    audio_format: str = ""
    audio_codec: str = ""
    audio_channels: int = 0
    audio_samplerate: int = 0
    audio_bitrate: str = ""
    audio_profile: str = ""

    # -- Chapters --
    use_filenames_as_chapters: bool = False
    no_chapter_reindexing: bool = False
    max_chapter_length: str = ""
    silence_noise_db: float = -30.0
    silence_min_length: float = 2.0
    first_chapter_offset: int = 0
    last_chapter_offset: int = 0
    merge_similar: bool = False
    similarity_threshold: float = 90.0
    no_chapter_numbering: bool = False
    chapter_pattern: str = DEFAULT_CHAPTER_PATTERN
    chapter_remove_chars: str = "„“”"

    # -- Chapter reference lookup --
    musicbrainz_url: str = "https://musicbrainz.org/ws/2"
    musicbrainz_timeout: float = 30.0
    user_agent: str = "audiobook-merge/0.1 (https://github.com/audiobook-merge)"

    @property
    def extensions(self) -> frozenset[str]:
        """Included extensions, lowercase, without dots."""
        return frozenset(
            e.strip().lstrip(".").lower()
            for e in self.include_extensions.split(",")
            if e.strip()
        )

    def chapter_lengths(self) -> tuple[int, int]:
        """Parse max_chapter_length "D[,M]" into (desired_ms, max_ms).

        "300" -> (300000, 300000), "300,900" -> (300000, 900000).
        Empty means no adjustment: (0, 0).
        """
        raw = self.max_chapter_length.strip()
        if not raw:
            return 0, 0
        parts = [p.strip() for p in raw.split(",")]
        if len(parts) > 2:
            raise InputValidationError(
                f"Invalid max chapter length {raw!r}, expected D[,M]"
            )
        try:
            desired = int(float(parts[0] or 0))
            maximum = int(float(parts[1])) if len(parts) == 2 else desired
        except ValueError as exc:
            raise InputValidationError(
                f"Invalid max chapter length {raw!r}, expected D[,M]"
            ) from exc
        if desired < 0 or maximum < 0:
            raise InputValidationError("Chapter lengths must not be negative")
        if maximum and maximum < desired:
            raise InputValidationError(
                f"Max chapter length {maximum}s is shorter than desired {desired}s"
            )
        return desired * 1000, maximum * 1000

    def output_format(self, output_file: Path) -> tuple[str, str, str]:
        """Resolve (extension, format, codec) for an output file.

        Explicit audio_format/audio_codec win; otherwise both are derived
        from the output extension (unknown extensions fall back to m4b).
        """
        ext = output_file.suffix.lstrip(".").lower()
        if ext not in EXTENSION_FORMAT:
            ext = "m4b"
        fmt = self.audio_format or EXTENSION_FORMAT[ext]
        codec = self.audio_codec or FORMAT_CODEC.get(fmt, "aac")
        return ext, fmt, codec

    def setup_logging(self) -> None:
        """Configure loguru for the merger."""
        logger.remove()  # Remove default stderr handler

        log_format = (
            "{time:YYYY-MM-DDTHH:mm:ssZ} | {level:<8} | "
            "{extra[stage]:<12} | {message}"
        )

        def _default_extra(record):
            record["extra"].setdefault("stage", "")
            return True

        logger.add(
            sys.stderr,
            format=log_format,
            level=self.log_level.upper(),
            filter=_default_extra,
        )

        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self.log_dir / "merge.log"),
            format=log_format,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            filter=_default_extra,
        )
