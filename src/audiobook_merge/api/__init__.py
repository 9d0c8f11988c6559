"""External API clients for chapter reference data.

Submodules:
    musicbrainz -- MusicBrainz release lookup (track titles as chapter names)
"""
