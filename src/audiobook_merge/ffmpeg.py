"""FFmpeg subprocess wrappers -- encode, concatenate, detect silence, tag.

Every wrapper returns a ToolResult instead of raising for a failing ffmpeg
run; callers translate unsuccessful results into MergeError subclasses.
"""

from __future__ import annotations

import functools
import subprocess
from pathlib import Path

from loguru import logger

from .errors import ExternalToolError
from .models import CODEC_ALAC, ConversionJob, ToolResult

log = logger.bind(stage="ffmpeg")


def _run_ffmpeg(args: list[str]) -> subprocess.CompletedProcess:
    """Run ffmpeg with common flags."""
    cmd = ["ffmpeg", "-hide_banner", "-nostdin"] + args
    args_str = " ".join(cmd)
    if len(args_str) > 200:
        args_str = args_str[:197] + "..."
    log.debug(f"run args={args_str}")
    try:
        return subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise ExternalToolError(tool="ffmpeg", exit_code=127, stderr=str(e)) from e


def _produced(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


def format_flag_allowed(codec: str) -> bool:
    """Whether -f <format> may be passed when muxing this codec.

    alac is fine in mp4 but ffmpeg rejects it as not mp4 compliant.
    """
    return codec != CODEC_ALAC


@functools.cache
def detect_aac_encoder() -> str:
    """Check if aac_at (Apple AudioToolbox) is available, fall back to aac."""
    try:
        result = subprocess.run(
            ["ffmpeg", "-hide_banner", "-encoders"],
            capture_output=True,
            text=True,
        )
    except OSError:
        return "aac"
    if "aac_at" in result.stdout:
        log.info("Using aac_at encoder (Apple AudioToolbox)")
        return "aac_at"
    log.info("Using default aac encoder")
    return "aac"


def build_convert_command(job: ConversionJob) -> list[str]:
    """Build the ffmpeg arguments converting job.source to its working file."""
    codec = detect_aac_encoder() if job.codec == "aac" else job.codec
    cmd = ["-y", "-i", str(job.source), "-vn", "-map", "0:a:0", "-c:a", codec]
    if job.channels:
        cmd += ["-ac", str(job.channels)]
    if job.sample_rate:
        cmd += ["-ar", str(job.sample_rate)]
    if job.bit_rate:
        cmd += ["-b:a", job.bit_rate]
    if job.profile:
        cmd += ["-profile:a", job.profile]
    if job.format and format_flag_allowed(job.codec):
        cmd += ["-f", job.format]
    cmd.append(str(job.working_file))
    return cmd


def convert(job: ConversionJob) -> ToolResult:
    """Encode one source file.

    Writes to the job's ``-converting`` working file and renames it to the
    destination on success. An existing non-empty destination is reused
    unless the job is forced.
    """
    if not job.force and _produced(job.destination):
        log.debug(f"Reusing converted file {job.destination.name}")
        return ToolResult(True, job.destination, "already converted")

    job.working_file.unlink(missing_ok=True)
    result = _run_ffmpeg(build_convert_command(job))
    if result.returncode != 0 or not _produced(job.working_file):
        job.working_file.unlink(missing_ok=True)
        return ToolResult(False, None, result.stderr[-2000:])

    job.working_file.replace(job.destination)
    return ToolResult(True, job.destination, "")


def write_listing(files: list[Path], listing: Path) -> None:
    """Write an ffmpeg concat demuxer listing with absolute, quoted paths."""
    lines = []
    for f in files:
        # Escape single quotes: path.replace("'", "'\\''")
        escaped = str(f.resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    listing.write_text("\n".join(lines) + "\n")


def concat(listing: Path, output: Path, fmt: str = "", codec: str = "") -> ToolResult:
    """Stream-copy the files of a concat listing into one output file."""
    cmd = [
        "-y",
        "-f", "concat",
        "-safe", "0",
        "-vn",
        "-i", str(listing),
        "-max_muxing_queue_size", "9999",
        "-c", "copy",
    ]
    if fmt and format_flag_allowed(codec):
        cmd += ["-f", fmt]
    cmd.append(str(output))

    result = _run_ffmpeg(cmd)
    if result.returncode != 0 or not output.is_file():
        return ToolResult(False, None, result.stderr[-2000:])
    return ToolResult(True, output, "")


def detect_silences(file: Path, noise_db: float = -30.0, min_length: float = 2.0) -> ToolResult:
    """Run silencedetect over a file; the raw log is in ``diagnostic``."""
    result = _run_ffmpeg([
        "-i", str(file),
        "-af", f"silencedetect=noise={noise_db}dB:d={min_length}",
        "-f", "null",
        "-",
    ])
    return ToolResult(result.returncode == 0, None, result.stderr)


def extract_cover(source: Path, target: Path) -> ToolResult:
    """Copy the embedded picture of source into target (jpg)."""
    result = _run_ffmpeg([
        "-y",
        "-i", str(source),
        "-an",
        "-vcodec", "copy",
        str(target),
    ])
    if result.returncode != 0 or not _produced(target):
        target.unlink(missing_ok=True)
        return ToolResult(False, None, result.stderr[-500:])
    return ToolResult(True, target, "")


def write_tags(
    source: Path,
    metadata_file: Path,
    output: Path,
    fmt: str = "",
    cover: Path | None = None,
) -> ToolResult:
    """Copy source to output with tags and chapters from an FFMETADATA file.

    Uses -c copy (no re-encode). If cover is given it is embedded as
    attached_pic.
    """
    cmd = ["-y", "-i", str(source), "-i", str(metadata_file)]
    if cover and cover.is_file():
        cmd += ["-i", str(cover), "-map", "0:a", "-map", "2", "-disposition:v:0", "attached_pic"]
    else:
        cmd += ["-map", "0:a"]
    cmd += ["-map_metadata", "1", "-map_chapters", "1", "-c", "copy"]
    if fmt:
        # Always named, alac included
        cmd += ["-f", "ipod" if fmt == "mp4" else fmt]
    cmd.append(str(output))

    result = _run_ffmpeg(cmd)
    if result.returncode != 0 or not _produced(output):
        output.unlink(missing_ok=True)
        return ToolResult(False, None, result.stderr[-2000:])
    return ToolResult(True, output, "")
