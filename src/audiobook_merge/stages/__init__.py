"""Stage registry -- maps Stage enum values to run functions.

Merge order: load -> convert -> chapters -> concat -> adjust -> tag -> finalize -> cleanup

Every stage has the signature ``run(ctx: MergeContext, config: MergeConfig)``
and raises a MergeError subclass when it cannot complete.

Stages:
    load     -- Refuse an existing destination unless forced. Collect input
                files (files or recursive directories, extension filter,
                natural sort), report skipped files, read embedded tags,
                take the first file's tags as the baseline tag, locate or
                extract cover art.
    convert  -- Encode every input into the temp dir through the bounded
                TaskPool (``--jobs``), then verify each destination exists and
                is non-empty. In no-conversion mode the sources are merged
                as-is after an extension consistency check.
    chapters -- Import chapters.txt when present; otherwise build one chapter
                per file from title tags/filenames, optionally aligned with a
                MusicBrainz track list and normalized.
    concat   -- Stream-copy all converted files into one temporary merged
                file via the ffmpeg concat demuxer (plain copy for one file).
    adjust   -- Split overlong chapters at detected silences of the merged
                file and fit the list to the merged duration.
    tag      -- Layer tags (overrides > metadata.opf > ffmetadata.txt >
                description.txt > first file), write tags, chapters and cover
                via ffmpeg -c copy, write the chapter sidecar.
    finalize -- Rename the merged file and its chapter sidecar into place.
    cleanup  -- Remove temporary artifacts unless debugging.
"""

from ..models import Stage


def get_stage_runner(stage: Stage):
    """Return the run function for a given stage."""
    if stage == Stage.LOAD:
        from .load import run as load_run

        return load_run

    if stage == Stage.CONVERT:
        from .convert import run as convert_run

        return convert_run

    if stage == Stage.CHAPTERS:
        from .chapters import run as chapters_run

        return chapters_run

    if stage == Stage.CONCAT:
        from .concat import run as concat_run

        return concat_run

    if stage == Stage.ADJUST:
        from .adjust import run as adjust_run

        return adjust_run

    if stage == Stage.TAG:
        from .tag import run as tag_run

        return tag_run

    if stage == Stage.FINALIZE:
        from .finalize import run as finalize_run

        return finalize_run

    if stage == Stage.CLEANUP:
        from .cleanup import run as cleanup_run

        return cleanup_run

    raise NotImplementedError(f"Stage '{stage.value}' is not implemented.")
