"""Filename and chapter title sanitization."""

import re
from pathlib import Path

from loguru import logger

log = logger.bind(stage="sanitize")


def sanitize_filename(filename: str) -> str:
    """Sanitize a filename component (not a full path).

    Replaces unsafe chars with underscores, removes leading dots,
    collapses repeated underscores, truncates to 255 bytes preserving extension.
    """
    log.debug(f"sanitize_filename(filename='{filename}')")

    sanitized = re.sub(r'[/\\:"*?<>|;\x00-\x1f]+', '_', filename.strip())
    sanitized = re.sub(r'^[._]+', '', sanitized)
    sanitized = re.sub(r'[._]+$', '', sanitized)
    sanitized = re.sub(r'__+', '_', sanitized)

    # Truncate to 255 bytes preserving extension
    original_len = len(sanitized.encode('utf-8'))
    if original_len > 255:
        p = Path(sanitized)
        ext = p.suffix
        stem = p.stem
        if ext:
            while len((stem + ext).encode('utf-8')) > 255 and stem:
                stem = stem[:-1]
            sanitized = stem + ext
        else:
            while len(sanitized.encode('utf-8')) > 255 and sanitized:
                sanitized = sanitized[:-1]
        log.debug(f"Truncated filename from {original_len} to {len(sanitized.encode('utf-8'))} bytes: '{sanitized}'")

    return sanitized


def sanitize_chapter_title(title: str) -> str:
    """Sanitize a chapter title for single-line sidecar formats."""
    sanitized = re.sub(r'[\r\n\t]+', ' ', title)
    sanitized = re.sub(r'  +', ' ', sanitized)
    return sanitized.strip()


def title_from_filename(path: Path) -> str:
    """Derive a chapter title from a filename.

    Strips the extension and the ``NNN-`` / ``-finished`` decorations
    added to converted intermediates.
    """
    stem = re.sub(r'-(?:finished|converting)$', '', path.stem)
    if stem != path.stem:
        stem = re.sub(r'^\d+-(?=.)', '', stem)
    return stem.strip()
