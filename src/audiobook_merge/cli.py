"""CLI entry point for the audiobook merger."""

import os
from pathlib import Path

import click
from loguru import logger

from .config import MergeConfig
from .errors import MergeError
from .runner import MergeRunner

log = logger.bind(stage="cli")

# CLI option -> tag field
TAG_OPTIONS: dict[str, str] = {
    "name": "title",
    "sortname": "sort_title",
    "album": "album",
    "sortalbum": "sort_album",
    "artist": "artist",
    "sortartist": "sort_artist",
    "genre": "genre",
    "writer": "writer",
    "albumartist": "album_artist",
    "year": "year",
    "description": "description",
    "longdesc": "long_description",
    "comment": "comment",
    "copyright": "copyright",
    "encoded-by": "encoded_by",
    "series": "series",
    "series-part": "series_part",
}


def _find_config_file() -> Path | None:
    """Look for .env next to the package or in cwd."""
    pkg_dir = Path(__file__).resolve().parent
    for candidate in [
        pkg_dir.parent.parent / ".env",  # dev: src/../.env
        Path.cwd() / ".env",
    ]:
        if candidate.is_file():
            return candidate
    return None


def _load_env_file(env_file: Path) -> None:
    """Load a shell-style .env file into os.environ (without overriding)."""
    for line in env_file.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if (value.startswith('"') and value.endswith('"')) or (
            value.startswith("'") and value.endswith("'")
        ):
            value = value[1:-1]
        # Skip bash variable expansions like ${VAR:-default}
        if "${" in value:
            continue
        # Don't override existing env vars (CLI > env > file)
        if key not in os.environ:
            os.environ[key] = value


def _tag_options(func):
    """Attach one --<tag> option per tag field."""
    for option in reversed(TAG_OPTIONS):
        func = click.option(
            f"--{option}",
            f"tag_{option.replace('-', '_')}",
            default=None,
            help=f"Set the {TAG_OPTIONS[option].replace('_', ' ')} tag.",
        )(func)
    return func


@click.command()
@click.argument("inputs", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option(
    "-o",
    "--output-file",
    required=True,
    type=click.Path(path_type=Path),
    help="Output file, or output directory with --batch-pattern.",
)
@click.option(
    "--include-extensions",
    default=None,
    help="Comma separated extensions of files to merge.",
)
@click.option(
    "--batch-pattern",
    "batch_patterns",
    multiple=True,
    help="Path pattern with placeholders, e.g. '%a/%s/%p - %n'. Repeatable.",
)
@click.option(
    "--dry-run", is_flag=True, help="Show batch matches without merging."
)
@click.option(
    "--jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Number of simultaneous conversion jobs.",
)
@click.option(
    "--use-filenames-as-chapters",
    is_flag=True,
    help="Take chapter titles from filenames instead of title tags.",
)
@click.option(
    "--no-chapter-reindexing",
    is_flag=True,
    help="Keep index-only chapter titles as they are.",
)
@click.option(
    "--max-chapter-length",
    default=None,
    help="Split chapters longer than M at silences near D seconds: 'D[,M]'.",
)
@click.option(
    "-m",
    "--musicbrainz-id",
    default="",
    help="MusicBrainz release id to take chapter titles from.",
)
@click.option(
    "--no-conversion", is_flag=True, help="Merge source files without re-encoding."
)
@click.option("-f", "--force", is_flag=True, help="Overwrite existing output files.")
@click.option("--debug", is_flag=True, help="Keep temporary files.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("--audio-format", default=None, help="Output container format.")
@click.option("--audio-codec", default=None, help="Output audio codec.")
@click.option("--audio-channels", type=int, default=None, help="Output channels.")
@click.option("--audio-samplerate", type=int, default=None, help="Output sample rate.")
@click.option("--audio-bitrate", default=None, help="Output bit rate, e.g. 64k.")
@click.option("--audio-profile", default=None, help="Encoder profile, e.g. aac_he.")
@_tag_options
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    default=None,
    help="Path to .env file.",
)
def main(
    inputs: tuple[Path, ...],
    output_file: Path,
    include_extensions: str | None,
    batch_patterns: tuple[str, ...],
    dry_run: bool,
    jobs: int | None,
    use_filenames_as_chapters: bool,
    no_chapter_reindexing: bool,
    max_chapter_length: str | None,
    musicbrainz_id: str,
    no_conversion: bool,
    force: bool,
    debug: bool,
    verbose: bool,
    config_file: str | None,
    **options,
) -> None:
    """Merge audio files into one chaptered audiobook (m4b).

    Batch mode (--batch-pattern) merges every matching leaf directory
    below the single INPUT directory into OUTPUT_FILE as a directory.
    """
    # Load .env into environment before MergeConfig reads env vars
    env_file = Path(config_file) if config_file else _find_config_file()
    if env_file and env_file.is_file():
        _load_env_file(env_file)
        log.debug(f"Loaded env from {env_file}")
    else:
        log.debug("No .env found")

    # Pass CLI flags as kwargs to avoid env pollution
    config_kwargs: dict[str, object] = {
        "dry_run": dry_run,
        "force": force,
        "debug": debug,
        "verbose": verbose,
        "no_conversion": no_conversion,
        "use_filenames_as_chapters": use_filenames_as_chapters,
        "no_chapter_reindexing": no_chapter_reindexing,
    }
    if verbose or debug:
        config_kwargs["log_level"] = "DEBUG"
    optional = {
        "include_extensions": include_extensions,
        "jobs": jobs,
        "max_chapter_length": max_chapter_length,
        "audio_format": options.pop("audio_format"),
        "audio_codec": options.pop("audio_codec"),
        "audio_channels": options.pop("audio_channels"),
        "audio_samplerate": options.pop("audio_samplerate"),
        "audio_bitrate": options.pop("audio_bitrate"),
        "audio_profile": options.pop("audio_profile"),
    }
    config_kwargs.update({k: v for k, v in optional.items() if v is not None})

    config = MergeConfig(**config_kwargs)  # type: ignore[arg-type]
    config.setup_logging()

    overrides = {
        field: options[f"tag_{option.replace('-', '_')}"]
        for option, field in TAG_OPTIONS.items()
        if options.get(f"tag_{option.replace('-', '_')}")
    }

    runner = MergeRunner(config=config, overrides=overrides, musicbrainz_id=musicbrainz_id)
    log.info(
        f"Starting merge: inputs={[str(i) for i in inputs]} output={output_file} "
        f"batch={list(batch_patterns)} dry_run={dry_run} force={force}"
    )
    try:
        result = runner.run(list(inputs), output_file, list(batch_patterns))
    except MergeError as e:
        log.error(str(e))
        raise click.ClickException(str(e)) from e

    if result is not None and result.failed:
        raise SystemExit(1)
