"""Tag values and layered tag assembly.

Sources are layered highest precedence first; a lower layer only fills
fields that are still empty:

    command line overrides > metadata.opf > ffmetadata.txt
        > description.txt > tags of the first input file
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Mapping

from loguru import logger

from .models import Chapter

log = logger.bind(stage="tags")

TEXT_FIELDS = (
    "title",
    "sort_title",
    "album",
    "sort_album",
    "artist",
    "sort_artist",
    "genre",
    "writer",
    "album_artist",
    "year",
    "description",
    "long_description",
    "comment",
    "copyright",
    "encoded_by",
    "series",
    "series_part",
)

# ffmpeg metadata key written for each field
FFMPEG_KEYS: dict[str, str] = {
    "title": "title",
    "sort_title": "sort_name",
    "album": "album",
    "sort_album": "sort_album",
    "artist": "artist",
    "sort_artist": "sort_artist",
    "genre": "genre",
    "writer": "composer",
    "album_artist": "album_artist",
    "year": "date",
    "description": "description",
    "long_description": "synopsis",
    "comment": "comment",
    "copyright": "copyright",
    "encoded_by": "encoded_by",
    "series": "series",
    "series_part": "series-part",
}

# Extra keys seen in the wild, read as aliases
_READ_ALIASES: dict[str, str] = {
    "sort_album_artist": "sort_artist",
    "composer": "writer",
    "date": "year",
    "year": "year",
    "synopsis": "long_description",
    "longdesc": "long_description",
    "show": "series",
    "grouping": "series",
    "series-part": "series_part",
    "series_part": "series_part",
    "encoder": "encoded_by",
}


@dataclass
class Tag:
    """Metadata written to the merged file."""

    title: str = ""
    sort_title: str = ""
    album: str = ""
    sort_album: str = ""
    artist: str = ""
    sort_artist: str = ""
    genre: str = ""
    writer: str = ""
    album_artist: str = ""
    year: str = ""
    description: str = ""
    long_description: str = ""
    comment: str = ""
    copyright: str = ""
    encoded_by: str = ""
    series: str = ""
    series_part: str = ""
    cover: Path | None = None
    chapters: list[Chapter] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, str]) -> Tag:
        """Build a Tag from field names or ffmpeg/ffprobe tag keys."""
        tag = cls()
        known = {f.name for f in fields(cls)} & set(TEXT_FIELDS)
        reverse = {v: k for k, v in FFMPEG_KEYS.items()}
        for raw_key, value in data.items():
            if value is None or not str(value).strip():
                continue
            key = raw_key.lower()
            name = key if key in known else reverse.get(key) or _READ_ALIASES.get(key)
            if name and not getattr(tag, name):
                setattr(tag, name, str(value).strip())
        return tag

    def fill_missing(self, other: Tag) -> Tag:
        """Copy fields from other that are still empty here."""
        for name in TEXT_FIELDS:
            if not getattr(self, name) and getattr(other, name):
                setattr(self, name, getattr(other, name))
        if self.cover is None and other.cover is not None:
            self.cover = other.cover
        if not self.chapters and other.chapters:
            self.chapters = list(other.chapters)
        return self

    def to_ffmetadata_tags(self) -> dict[str, str]:
        """Non-empty fields keyed by ffmpeg metadata key."""
        tags = {
            FFMPEG_KEYS[name]: getattr(self, name)
            for name in TEXT_FIELDS
            if getattr(self, name)
        }
        # Apple Books/Plex read the series from these
        if self.series:
            tags.setdefault("show", self.series)
            tags.setdefault("grouping", self.series)
        tags["media_type"] = "2"
        return tags


def from_first_file(file_tags: Mapping[str, str]) -> Tag:
    """Baseline tag from the first input file.

    The file's own title usually names a single chapter, so the album
    doubles as the book title. Without an album the file title is kept.
    """
    tag = Tag.from_mapping(file_tags)
    if tag.album:
        tag.title = tag.album
    return tag


def assemble(layers: list[Tag]) -> Tag:
    """Merge tag layers, highest precedence first."""
    result = Tag()
    for layer in layers:
        result.fill_missing(layer)
    return result


_OPF_NS = {
    "opf": "http://www.idpf.org/2007/opf",
    "dc": "http://purl.org/dc/elements/1.1/",
}


def parse_opf(content: str) -> Tag:
    """Read an OPF package description (calibre metadata.opf) into a Tag.

    Malformed XML yields an empty Tag.
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        log.warning(f"Ignoring malformed metadata.opf: {e}")
        return Tag()

    metadata = root.find(".//opf:metadata", _OPF_NS)
    if metadata is None:
        metadata = root

    def _text(path: str) -> str:
        return (metadata.findtext(path, "", _OPF_NS) or "").strip()

    tag = Tag(
        title=_text("dc:title"),
        description=_text("dc:description"),
        genre=_text("dc:subject"),
        copyright=_text("dc:rights"),
    )
    date = _text("dc:date")
    if date:
        tag.year = date[:4]

    role_attr = f"{{{_OPF_NS['opf']}}}role"
    authors: list[str] = []
    narrators: list[str] = []
    for creator in metadata.iterfind("dc:creator", _OPF_NS):
        name = (creator.text or "").strip()
        if not name:
            continue
        role = creator.get(role_attr) or creator.get("role") or "aut"
        if role == "nrt":
            narrators.append(name)
        elif role == "aut":
            authors.append(name)
    if authors:
        tag.artist = ", ".join(authors)
        tag.album_artist = tag.artist
    if narrators:
        tag.writer = ", ".join(narrators)

    for meta in metadata.iterfind("opf:meta", _OPF_NS):
        name = meta.get("name", "")
        content_value = (meta.get("content") or "").strip()
        if name == "calibre:series":
            tag.series = content_value
        elif name == "calibre:series_index":
            tag.series_part = _format_series_index(content_value)
        elif name == "calibre:title_sort":
            tag.sort_title = content_value
    return tag


def _format_series_index(value: str) -> str:
    """calibre stores "3.0" for book 3."""
    try:
        number = float(value)
    except ValueError:
        return value
    return str(int(number)) if number.is_integer() else value
