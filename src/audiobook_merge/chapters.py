"""Chapter synthesis, external alignment, normalization, and length adjustment.

Chapter lists move through these states during one merge:

    RAW        build_from_files   -- one chapter per input file
    ALIGNED    align_with_references + normalize (optional)
    ADJUSTED   adjust             -- overlong chapters split at silences (optional)
    FINAL      fit_to_length      -- last chapter ends at the merged track end

Every operation returns a new list; chapters stay ordered and contiguous.
All offsets and lengths are integer milliseconds.
"""

from __future__ import annotations

import re
from bisect import bisect_left, bisect_right
from dataclasses import replace
from typing import TYPE_CHECKING, Sequence

from loguru import logger
from rapidfuzz import fuzz

from .models import AudioFile, Chapter, ChapterReference, Silence
from .sanitize import title_from_filename

if TYPE_CHECKING:
    from .config import MergeConfig

log = logger.bind(stage="chapters")

# "1", "007", "Chapter 3", "Track 12", "Kapitel 4", "Part 2", "CD 1"...
_INDEX_ONLY_RE = re.compile(
    r"^\s*(?:(?:chapter|chap\.?|ch\.?|kapitel|part|teil|track|disc|cd)\s*)?"
    r"#?\s*\d+\s*$",
    re.IGNORECASE,
)


def is_index_only(title: str) -> bool:
    """True if a title carries nothing but a chapter number."""
    return bool(_INDEX_ONLY_RE.match(title or ""))


def is_contiguous(chapters: Sequence[Chapter]) -> bool:
    """True if chapters start at 0, never overlap, and leave no gaps."""
    expected = 0
    for chapter in chapters:
        if chapter.start != expected or chapter.length < 0:
            return False
        expected = chapter.end
    return True


def fit_to_length(chapters: Sequence[Chapter], total_length: int) -> list[Chapter]:
    """Make the chapter list end exactly at ``total_length``.

    Chapters starting at or beyond the end are dropped (the first chapter
    is always kept) and the last remaining chapter is stretched or shrunk.
    """
    fitted = [replace(c) for c in chapters]
    if not fitted:
        return fitted
    while len(fitted) > 1 and fitted[-1].start >= total_length:
        dropped = fitted.pop()
        log.debug(f"Dropping chapter {dropped.title!r} beyond track end")
    last = fitted[-1]
    last.length = max(0, total_length - last.start)
    return fitted


class ChapterHandler:
    """Builds and reshapes chapter lists for a merged audiobook."""

    def __init__(
        self,
        use_filenames: bool = False,
        reindex: bool = True,
        merge_similar: bool = False,
        similarity_threshold: float = 90.0,
        numbering: bool = True,
        chapter_pattern: str = "",
        remove_chars: str = "",
        first_offset: int = 0,
        last_offset: int = 0,
    ) -> None:
        self.use_filenames = use_filenames
        self.reindex_enabled = reindex
        self.merge_similar = merge_similar
        self.similarity_threshold = similarity_threshold
        self.numbering = numbering
        self.chapter_pattern = (
            re.compile(chapter_pattern, re.IGNORECASE) if chapter_pattern else None
        )
        self.remove_chars = remove_chars
        self.first_offset = first_offset
        self.last_offset = last_offset

    @classmethod
    def from_config(cls, config: MergeConfig) -> ChapterHandler:
        return cls(
            use_filenames=config.use_filenames_as_chapters,
            reindex=not config.no_chapter_reindexing,
            merge_similar=config.merge_similar,
            similarity_threshold=config.similarity_threshold,
            numbering=not config.no_chapter_numbering,
            chapter_pattern=config.chapter_pattern,
            remove_chars=config.chapter_remove_chars,
            first_offset=config.first_chapter_offset,
            last_offset=config.last_chapter_offset,
        )

    # -- RAW --

    def build_from_files(self, entries: Sequence[tuple[AudioFile, int]]) -> list[Chapter]:
        """Build one chapter per (source file, duration ms) pair.

        Titles come from the source's title tag, or from its filename when
        the tag is missing or filenames are preferred.
        """
        chapters: list[Chapter] = []
        start = 0
        for audio_file, duration in entries:
            title = "" if self.use_filenames else audio_file.tags.get("title", "").strip()
            if not title:
                title = title_from_filename(audio_file.path)
            chapters.append(Chapter(start=start, length=max(0, duration), title=title))
            start += max(0, duration)

        if self.reindex_enabled:
            chapters = self.reindex(chapters)
        log.debug(f"Built {len(chapters)} chapters from files")
        return chapters

    def reindex(self, chapters: Sequence[Chapter]) -> list[Chapter]:
        """Renumber 1..n when every title is index-only (e.g. "Chapter 7")."""
        result = [replace(c) for c in chapters]
        if not result or not all(is_index_only(c.title) for c in result):
            return result
        for number, chapter in enumerate(result, start=1):
            chapter.title = str(number)
        log.debug(f"Reindexed {len(result)} index-only chapters")
        return result

    # -- ALIGNED --

    def align_with_references(
        self,
        chapters: Sequence[Chapter],
        references: Sequence[ChapterReference],
    ) -> list[Chapter]:
        """Take titles from an external track list, pairing by position.

        Boundaries stay as built; entries beyond the shorter list keep
        their original titles.
        """
        aligned = [replace(c) for c in chapters]
        if not references:
            log.info("No chapter references available, keeping built chapters")
            return aligned
        if len(references) != len(aligned):
            log.warning(
                f"Reference track count {len(references)} differs from "
                f"chapter count {len(aligned)}, aligning first "
                f"{min(len(references), len(aligned))}"
            )
        for chapter, reference in zip(aligned, references):
            if reference.title.strip():
                chapter.title = reference.title.strip()
        return aligned

    def normalize(self, chapters: Sequence[Chapter]) -> list[Chapter]:
        """Clean titles, merge similar neighbours, renumber, apply offsets."""
        result: list[Chapter] = []
        for chapter in chapters:
            title = self._clean_title(chapter.title)
            if result and self.merge_similar and self._similar(result[-1].title, title):
                result[-1].length += chapter.length
                continue
            result.append(Chapter(start=chapter.start, length=chapter.length, title=title))

        if self.numbering and self.reindex_enabled:
            result = self.reindex(result)

        if len(result) >= 2:
            if self.first_offset:
                self._shift_boundary(result, 1, self.first_offset)
            if self.last_offset:
                self._shift_boundary(result, len(result) - 1, self.last_offset)
        return result

    def _clean_title(self, title: str) -> str:
        if self.chapter_pattern:
            m = self.chapter_pattern.match(title)
            if m and m.groups() and m.group(1):
                title = m.group(1)
        for char in self.remove_chars:
            title = title.replace(char, "")
        return title.strip()

    def _similar(self, a: str, b: str) -> bool:
        return fuzz.ratio(a.lower(), b.lower()) >= self.similarity_threshold

    @staticmethod
    def _shift_boundary(chapters: list[Chapter], index: int, delta: int) -> None:
        """Move the start of chapters[index] by delta, keeping contiguity."""
        previous, current = chapters[index - 1], chapters[index]
        end = current.end
        boundary = min(max(current.start + delta, previous.start), end)
        previous.length = boundary - previous.start
        current.start = boundary
        current.length = end - boundary

    # -- ADJUSTED --

    def adjust(
        self,
        chapters: Sequence[Chapter],
        silences: Sequence[Silence],
        desired_length: int,
        max_length: int,
    ) -> list[Chapter]:
        """Split chapters longer than ``max_length`` at detected silences.

        The split point is the midpoint of the silence (strictly inside the
        chapter) closest to ``start + desired_length``, or ``start +
        max_length`` when no desired length is set. Both halves keep the
        title. A chapter without a usable silence stays unsplit.
        """
        result = [replace(c) for c in chapters]
        if max_length <= 0 or not silences:
            return result

        target_offset = desired_length if desired_length > 0 else max_length
        midpoints = sorted({s.midpoint for s in silences})

        adjusted: list[Chapter] = []
        pending = list(reversed(result))
        splits = 0
        while pending:
            chapter = pending.pop()
            if chapter.length <= max_length:
                adjusted.append(chapter)
                continue
            split = self._closest_midpoint(midpoints, chapter, chapter.start + target_offset)
            if split is None:
                log.debug(
                    f"No silence inside overlong chapter {chapter.title!r} "
                    f"({chapter.length} ms), keeping it"
                )
                adjusted.append(chapter)
                continue
            splits += 1
            # Re-examine both halves, first half first
            pending.append(Chapter(start=split, length=chapter.end - split, title=chapter.title))
            pending.append(Chapter(start=chapter.start, length=split - chapter.start, title=chapter.title))

        if splits:
            log.info(f"Split overlong chapters {splits} times ({len(adjusted)} chapters)")
        return adjusted

    @staticmethod
    def _closest_midpoint(midpoints: list[int], chapter: Chapter, target: int) -> int | None:
        lo = bisect_right(midpoints, chapter.start)
        hi = bisect_left(midpoints, chapter.end)
        if lo >= hi:
            return None
        return min(midpoints[lo:hi], key=lambda m: (abs(m - target), m))
