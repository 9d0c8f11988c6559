"""MusicBrainz release lookup -- track titles used as chapter references.

Fetches ``/release/<mbid>?inc=recordings`` (XML, mmd-2.0 schema) and
returns the tracks of all media ordered by medium and track position.
"""

import xml.etree.ElementTree as ET

import httpx
from loguru import logger

from ..errors import MetadataLookupFailure
from ..models import ChapterReference

log = logger.bind(stage="musicbrainz")

NS = {"mb": "http://musicbrainz.org/ns/mmd-2.0#"}


def fetch_release(
    mbid: str,
    base_url: str = "https://musicbrainz.org/ws/2",
    timeout: float = 30.0,
    user_agent: str = "audiobook-merge/0.1",
) -> str:
    """Download the release XML including its recordings."""
    url = f"{base_url.rstrip('/')}/release/{mbid}"
    log.debug(f"MusicBrainz lookup: {url}")
    try:
        resp = httpx.get(
            url,
            params={"inc": "recordings"},
            headers={"User-Agent": user_agent, "Accept": "application/xml"},
            timeout=timeout,
            follow_redirects=True,
        )
        resp.raise_for_status()
    except httpx.HTTPError as e:
        raise MetadataLookupFailure(f"MusicBrainz lookup for {mbid} failed: {e}") from e
    return resp.text


def parse_recordings(xml_text: str) -> list[ChapterReference]:
    """Parse release XML into ordered chapter references.

    Track titles win over recording titles; lengths are milliseconds
    (0 when MusicBrainz has none).
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise MetadataLookupFailure(f"Malformed MusicBrainz response: {e}") from e

    tracks: list[tuple[int, int, ChapterReference]] = []
    for medium in root.iterfind(".//mb:medium", NS):
        medium_pos = _int(medium.findtext("mb:position", "0", NS))
        for track in medium.iterfind("mb:track-list/mb:track", NS):
            track_pos = _int(track.findtext("mb:position", "0", NS))
            title = (
                track.findtext("mb:title", "", NS)
                or track.findtext("mb:recording/mb:title", "", NS)
            ).strip()
            length = _int(
                track.findtext("mb:length", "", NS)
                or track.findtext("mb:recording/mb:length", "", NS)
            )
            tracks.append((medium_pos, track_pos, ChapterReference(title=title, length=length)))

    tracks.sort(key=lambda t: (t[0], t[1]))
    log.debug(f"MusicBrainz release has {len(tracks)} tracks")
    return [ref for _, _, ref in tracks]


def lookup_chapters(
    mbid: str,
    base_url: str = "https://musicbrainz.org/ws/2",
    timeout: float = 30.0,
    user_agent: str = "audiobook-merge/0.1",
) -> list[ChapterReference]:
    """Fetch and parse a release's track list."""
    return parse_recordings(fetch_release(mbid, base_url, timeout, user_agent))


def _int(value: str | None) -> int:
    try:
        return int(value or 0)
    except ValueError:
        return 0
