"""Tests for api/musicbrainz.py -- release lookup with mocked HTTP."""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from audiobook_merge.api.musicbrainz import fetch_release, lookup_chapters, parse_recordings
from audiobook_merge.errors import MetadataLookupFailure
from audiobook_merge.models import ChapterReference

RELEASE_XML = """<?xml version="1.0" encoding="UTF-8"?>
<metadata xmlns="http://musicbrainz.org/ns/mmd-2.0#">
  <release id="abc">
    <title>The Book</title>
    <medium-list count="2">
      <medium>
        <position>2</position>
        <track-list count="1">
          <track id="t3">
            <position>1</position>
            <length>120000</length>
            <recording id="r3"><title>Finale</title><length>120500</length></recording>
          </track>
        </track-list>
      </medium>
      <medium>
        <position>1</position>
        <track-list count="2">
          <track id="t2">
            <position>2</position>
            <title>Middle Part</title>
            <recording id="r2"><title>Middle (recording)</title><length>300000</length></recording>
          </track>
          <track id="t1">
            <position>1</position>
            <length>60000</length>
            <recording id="r1"><title>Opening</title></recording>
          </track>
        </track-list>
      </medium>
    </medium-list>
  </release>
</metadata>
"""


class TestParseRecordings:
    def test_orders_by_medium_and_track(self):
        refs = parse_recordings(RELEASE_XML)
        assert refs == [
            ChapterReference(title="Opening", length=60000),
            ChapterReference(title="Middle Part", length=300000),
            ChapterReference(title="Finale", length=120000),
        ]

    def test_malformed_xml_raises_lookup_failure(self):
        with pytest.raises(MetadataLookupFailure, match="Malformed"):
            parse_recordings("<metadata><release>")

    def test_release_without_media(self):
        xml = '<metadata xmlns="http://musicbrainz.org/ns/mmd-2.0#"><release id="x"/></metadata>'
        assert parse_recordings(xml) == []


class TestFetchRelease:
    @patch("audiobook_merge.api.musicbrainz.httpx.get")
    def test_requests_recordings(self, mock_get):
        mock_response = MagicMock()
        mock_response.text = RELEASE_XML
        mock_get.return_value = mock_response

        assert fetch_release("abc", base_url="https://mb.example/ws/2/") == RELEASE_XML
        args, kwargs = mock_get.call_args
        assert args[0] == "https://mb.example/ws/2/release/abc"
        assert kwargs["params"] == {"inc": "recordings"}
        assert "User-Agent" in kwargs["headers"]

    @patch("audiobook_merge.api.musicbrainz.httpx.get")
    def test_http_error_raises_lookup_failure(self, mock_get):
        mock_get.side_effect = httpx.ConnectError("connection refused")
        with pytest.raises(MetadataLookupFailure, match="abc"):
            fetch_release("abc")

    @patch("audiobook_merge.api.musicbrainz.httpx.get")
    def test_status_error_raises_lookup_failure(self, mock_get):
        mock_response = MagicMock()
        request = httpx.Request("GET", "https://musicbrainz.org/ws/2/release/abc")
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "404 Not Found", request=request, response=httpx.Response(404, request=request)
        )
        mock_get.return_value = mock_response
        with pytest.raises(MetadataLookupFailure):
            fetch_release("abc")


class TestLookupChapters:
    @patch("audiobook_merge.api.musicbrainz.httpx.get")
    def test_fetch_and_parse(self, mock_get):
        mock_response = MagicMock()
        mock_response.text = RELEASE_XML
        mock_get.return_value = mock_response
        assert [r.title for r in lookup_chapters("abc")] == ["Opening", "Middle Part", "Finale"]
