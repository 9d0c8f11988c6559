"""Parsers and writers for the text formats exchanged with ffmpeg and sidecars.

- ffmpeg ``silencedetect`` log output -> ordered Silence list
- mp4chaps chapter lists (``chapters.txt``): ``HH:MM:SS.mmm Title`` per line
- FFMETADATA1 files (``ffmetadata.txt`` sidecar, ffmpeg ``-i metadata``)
"""

from __future__ import annotations

import re
from fractions import Fraction

from loguru import logger

from .models import Chapter, Silence
from .sanitize import sanitize_chapter_title

log = logger.bind(stage="parsers")

_SILENCE_START_RE = re.compile(r"silence_start:\s*(-?[\d.]+)")
_SILENCE_END_RE = re.compile(
    r"silence_end:\s*(-?[\d.]+)\s*\|\s*silence_duration:\s*([\d.]+)"
)
_MP4CHAPS_RE = re.compile(r"^\s*(\d+(?::\d{1,2}){1,2}(?:\.\d+)?)\s*(.*)$")


def seconds_to_ms(seconds: float) -> int:
    return int(round(seconds * 1000))


def parse_silences(output: str) -> list[Silence]:
    """Parse ffmpeg silencedetect output into ordered silences.

    A trailing silence_start without a matching silence_end (silence
    running to the end of the stream) is ignored.
    """
    silences: list[Silence] = []
    pending_start: float | None = None
    for line in output.splitlines():
        m = _SILENCE_START_RE.search(line)
        if m:
            pending_start = max(0.0, float(m.group(1)))
            continue
        m = _SILENCE_END_RE.search(line)
        if m:
            end = float(m.group(1))
            duration = float(m.group(2))
            start = pending_start if pending_start is not None else max(0.0, end - duration)
            silences.append(
                Silence(start=seconds_to_ms(start), length=seconds_to_ms(max(0.0, end - start)))
            )
            pending_start = None
    silences.sort(key=lambda s: s.start)
    log.debug(f"Parsed {len(silences)} silences")
    return silences


def parse_timestamp(value: str) -> int:
    """Parse ``[HH:]MM:SS[.fff]`` into milliseconds."""
    parts = value.strip().split(":")
    seconds = float(parts[-1])
    minutes = int(parts[-2]) if len(parts) >= 2 else 0
    hours = int(parts[-3]) if len(parts) >= 3 else 0
    return hours * 3_600_000 + minutes * 60_000 + seconds_to_ms(seconds)


def format_timestamp(ms: int) -> str:
    """Format milliseconds as ``HH:MM:SS.mmm``."""
    hours, rest = divmod(max(0, ms), 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{millis:03d}"


def parse_mp4chaps(content: str, total_length: int = 0) -> list[Chapter]:
    """Parse an mp4chaps chapter list.

    Lengths are derived from the next chapter's start; the last chapter
    runs to ``total_length`` when given, otherwise it has length 0 until
    fitted to the merged track.
    """
    starts: list[tuple[int, str]] = []
    for line in content.splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        m = _MP4CHAPS_RE.match(line)
        if not m:
            log.warning(f"Skipping unparseable chapter line: {line!r}")
            continue
        starts.append((parse_timestamp(m.group(1)), m.group(2).strip()))

    starts.sort(key=lambda item: item[0])
    chapters: list[Chapter] = []
    for i, (start, title) in enumerate(starts):
        if i + 1 < len(starts):
            end = starts[i + 1][0]
        else:
            end = max(start, total_length)
        chapters.append(Chapter(start=start, length=end - start, title=title))
    return chapters


def format_mp4chaps(chapters: list[Chapter]) -> str:
    """Render chapters as an mp4chaps chapter list."""
    lines = [
        f"{format_timestamp(c.start)} {sanitize_chapter_title(c.title)}"
        for c in chapters
    ]
    if chapters:
        lines.insert(0, f"## total-duration:: {format_timestamp(chapters[-1].end)}")
    return "\n".join(lines) + "\n"


def _unescape_ffmetadata(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value, flags=re.DOTALL)


def _escape_ffmetadata(value: str) -> str:
    return re.sub(r"([=;#\\\n])", r"\\\1", value)


def parse_ffmetadata(content: str) -> tuple[dict[str, str], list[Chapter]]:
    """Parse FFMETADATA1 content into (global tags, chapters).

    Tag keys are lowercased. Chapter times honour each chapter's TIMEBASE.
    Stream sections are ignored.
    """
    # Join escaped line continuations first
    content = content.replace("\\\r\n", "\\\n")
    logical: list[str] = []
    buffer = ""
    for raw in content.split("\n"):
        line = buffer + raw
        if line.endswith("\\") and not line.endswith("\\\\"):
            buffer = line + "\n"
            continue
        buffer = ""
        logical.append(line.rstrip("\r"))

    tags: dict[str, str] = {}
    chapters: list[Chapter] = []
    section = "global"
    current: dict[str, str] = {}

    def _flush_chapter() -> None:
        if section != "chapter" or "start" not in current:
            return
        timebase = Fraction(current.get("timebase", "1/1000"))
        start = seconds_to_ms(float(int(current["start"]) * timebase))
        end = seconds_to_ms(float(int(current.get("end", current["start"])) * timebase))
        chapters.append(
            Chapter(start=start, length=max(0, end - start), title=current.get("title", ""))
        )

    for line in logical:
        stripped = line.strip()
        if not stripped or stripped.startswith((";", "#")):
            continue
        if stripped.startswith("[") and stripped.endswith("]"):
            _flush_chapter()
            section = stripped[1:-1].strip().lower()
            current = {}
            continue
        # Split on the first unescaped '='
        m = re.match(r"((?:[^=\\]|\\.)*)=(.*)", line, flags=re.DOTALL)
        if not m:
            continue
        key = _unescape_ffmetadata(m.group(1)).strip().lower()
        value = _unescape_ffmetadata(m.group(2))
        if section == "global":
            tags[key] = value
        elif section == "chapter":
            current[key] = value
    _flush_chapter()

    chapters.sort(key=lambda c: c.start)
    return tags, chapters


def format_ffmetadata(tags: dict[str, str], chapters: list[Chapter]) -> str:
    """Render tags and chapters as an FFMETADATA1 file."""
    lines = [";FFMETADATA1"]
    for key, value in tags.items():
        if value:
            lines.append(f"{_escape_ffmetadata(key)}={_escape_ffmetadata(value)}")
    lines.append("")
    for chapter in chapters:
        lines.extend(
            [
                "[CHAPTER]",
                "TIMEBASE=1/1000",
                f"START={chapter.start}",
                f"END={chapter.end}",
                f"title={_escape_ffmetadata(chapter.title)}",
                "",
            ]
        )
    return "\n".join(lines)
