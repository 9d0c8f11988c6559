"""Tests for tags.py -- Tag values, layering, and metadata.opf parsing."""

from audiobook_merge.models import Chapter
from audiobook_merge.tags import Tag, assemble, from_first_file, parse_opf

OPF = """<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://www.idpf.org/2007/opf" unique-identifier="uuid_id" version="2.0">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    <dc:title>The Long Road</dc:title>
    <dc:creator opf:file-as="Doe, Jane" opf:role="aut">Jane Doe</dc:creator>
    <dc:creator opf:role="nrt">Sam Reader</dc:creator>
    <dc:description>A journey.</dc:description>
    <dc:date>2019-05-01T00:00:00+00:00</dc:date>
    <dc:subject>Fantasy</dc:subject>
    <meta name="calibre:series" content="Road Saga"/>
    <meta name="calibre:series_index" content="2.0"/>
    <meta name="calibre:title_sort" content="Long Road, The"/>
  </metadata>
</package>
"""


class TestTagFromMapping:
    def test_field_names(self):
        tag = Tag.from_mapping({"title": "Book", "album_artist": "Jane"})
        assert tag.title == "Book"
        assert tag.album_artist == "Jane"

    def test_ffmpeg_keys_and_aliases(self):
        tag = Tag.from_mapping({"composer": "Narrator", "date": "2001", "show": "Saga", "SYNOPSIS": "Long"})
        assert tag.writer == "Narrator"
        assert tag.year == "2001"
        assert tag.series == "Saga"
        assert tag.long_description == "Long"

    def test_ignores_empty_and_unknown(self):
        tag = Tag.from_mapping({"title": "  ", "encoder_settings": "x"})
        assert tag == Tag()


class TestTagLayers:
    def test_higher_layer_wins(self):
        overrides = Tag(artist="CLI Artist")
        opf = Tag(artist="OPF Artist", title="OPF Title")
        baseline = Tag(title="File Title", genre="Audiobook")
        result = assemble([overrides, opf, baseline])
        assert result.artist == "CLI Artist"
        assert result.title == "OPF Title"
        assert result.genre == "Audiobook"

    def test_lower_layer_fills_unset_fields_only(self):
        result = assemble([Tag(description="From sidecar"), Tag(description="From file", comment="c")])
        assert result.description == "From sidecar"
        assert result.comment == "c"

    def test_chapters_and_cover_carried(self, tmp_path):
        cover = tmp_path / "cover.jpg"
        result = assemble([Tag(), Tag(cover=cover, chapters=[Chapter(0, 10, "a")])])
        assert result.cover == cover
        assert result.chapters == [Chapter(0, 10, "a")]

    def test_layers_not_mutated(self):
        top = Tag(title="A")
        assemble([top, Tag(artist="B")])
        assert top.artist == ""


class TestFromFirstFile:
    def test_album_becomes_title(self):
        tag = from_first_file({"title": "Track 01", "album": "The Book", "artist": "Jane"})
        assert tag.title == "The Book"
        assert tag.album == "The Book"
        assert tag.artist == "Jane"

    def test_title_kept_without_album(self):
        tag = from_first_file({"title": "The Book", "artist": "Jane"})
        assert tag.title == "The Book"
        assert tag.album == ""


class TestToFfmetadataTags:
    def test_keys_and_series_extras(self):
        tag = Tag(title="Book", writer="Reader", year="2020", series="Saga", series_part="3")
        tags = tag.to_ffmetadata_tags()
        assert tags["title"] == "Book"
        assert tags["composer"] == "Reader"
        assert tags["date"] == "2020"
        assert tags["series"] == "Saga"
        assert tags["series-part"] == "3"
        assert tags["show"] == "Saga"
        assert tags["media_type"] == "2"
        assert "genre" not in tags


class TestParseOpf:
    def test_calibre_metadata(self):
        tag = parse_opf(OPF)
        assert tag.title == "The Long Road"
        assert tag.artist == "Jane Doe"
        assert tag.album_artist == "Jane Doe"
        assert tag.writer == "Sam Reader"
        assert tag.description == "A journey."
        assert tag.year == "2019"
        assert tag.genre == "Fantasy"
        assert tag.series == "Road Saga"
        assert tag.series_part == "2"
        assert tag.sort_title == "Long Road, The"

    def test_malformed_xml_yields_empty_tag(self):
        assert parse_opf("<package><metadata>") == Tag()

    def test_fractional_series_index_kept(self):
        opf = OPF.replace('content="2.0"', 'content="2.5"')
        assert parse_opf(opf).series_part == "2.5"
