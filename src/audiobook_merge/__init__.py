"""Audiobook Merge -- merge audio files into chaptered, tagged m4b audiobooks.

Core modules:
    config      -- Merge configuration via pydantic-settings (.env + env vars)
    cli         -- Click CLI entry point. CLI flags passed as kwargs to MergeConfig
                   (no env pollution).
    runner      -- Single-file and batch mode orchestration, stage execution
    context     -- Per-merge state handed from stage to stage
    batch       -- Leaf directory discovery, batch pattern matching, job derivation
    concurrency -- Bounded-parallelism task pool for conversions
    chapters    -- Chapter synthesis, MusicBrainz alignment, silence-based splitting
    tags        -- Tag values, layered tag assembly, metadata.opf reader
    parsers     -- silencedetect output, chapters.txt and FFMETADATA1 formats
    ffmpeg      -- ffmpeg subprocess wrappers returning ToolResult values
    ffprobe     -- Audio file inspection via ffprobe subprocess. Duration functions raise
                   ValueError on empty output, ExternalToolError when ffprobe fails.
    sanitize    -- Filename and chapter title sanitization

Subpackages:
    api    -- External API clients (MusicBrainz chapter references)
    stages -- Merge stages (load, convert, chapters, concat, adjust, tag, finalize, cleanup)
"""
