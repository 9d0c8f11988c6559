"""FFprobe subprocess wrappers for audio file inspection."""

import json
import subprocess
from pathlib import Path

from .errors import ExternalToolError


def _run_ffprobe(args: list[str]) -> subprocess.CompletedProcess:
    """Run ffprobe with common flags."""
    try:
        return subprocess.run(
            ["ffprobe", "-v", "error"] + args,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as e:
        raise ExternalToolError(tool="ffprobe", exit_code=127, stderr=str(e)) from e


def get_duration(file: Path) -> float:
    """Get duration in seconds."""
    result = _run_ffprobe([
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(file),
    ])
    if result.returncode != 0:
        raise ExternalToolError(
            tool="ffprobe",
            exit_code=result.returncode,
            stderr=result.stderr,
        )
    output = result.stdout.strip()
    if not output or output == "N/A":
        raise ValueError(f"ffprobe returned empty duration for {file}")
    return float(output)


def get_duration_ms(file: Path) -> int:
    """Get duration in whole milliseconds."""
    return int(round(get_duration(file) * 1000))


def get_tags(file: Path) -> dict[str, str]:
    """Get format-level metadata tags from an audio file.

    Returns dict with lowercase keys. Common keys: artist, album_artist,
    title, album, genre, date, comment. Falls back to the first audio
    stream's tags (ogg/opus store them there).
    """
    result = _run_ffprobe([
        "-show_entries", "format_tags:stream_tags",
        "-select_streams", "a:0",
        "-of", "json",
        str(file),
    ])
    if result.returncode != 0:
        return {}
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError:
        return {}
    format_tags = (data.get("format") or {}).get("tags") or {}
    tags = {k.lower(): str(v) for k, v in format_tags.items()}
    for stream in data.get("streams") or []:
        for key, value in (stream.get("tags") or {}).items():
            tags.setdefault(key.lower(), str(value))
    return tags


def has_attached_picture(file: Path) -> bool:
    """Check if a file carries an embedded cover image stream."""
    result = _run_ffprobe([
        "-select_streams", "v",
        "-show_entries", "stream=codec_name",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(file),
    ])
    return result.returncode == 0 and bool(result.stdout.strip())


def duration_to_timestamp(seconds: float) -> str:
    """Convert seconds to HH:MM:SS."""
    total = int(seconds)
    h = total // 3600
    m = (total % 3600) // 60
    s = total % 60
    return f"{h:02d}:{m:02d}:{s:02d}"
