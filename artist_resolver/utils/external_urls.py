"""Extract authority identifiers from profile URLs.

Authorities link to each other with plain URLs (MusicBrainz URL
relations, Discogs profile links, ISNI external information).  The
patterns below turn such a URL into an ``(authority, external_id)`` pair
so the link can be recorded as a cross-id.
"""

import re

_URL_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("discogs", re.compile(r"discogs\.com/(?:[a-z]{2}/)?artist/(\d+)", re.IGNORECASE)),
    ("spotify", re.compile(r"open\.spotify\.com/(?:intl-[a-z-]+/)?artist/([A-Za-z0-9]{22})")),
    ("isni", re.compile(r"isni(?:\.oclc)?\.org/(?:isni/)?([0-9 ]{15,19}[0-9Xx])")),
    ("musicbrainz", re.compile(r"musicbrainz\.org/artist/([0-9a-f-]{36})", re.IGNORECASE)),
    ("apple_music", re.compile(r"music\.apple\.com/(?:[a-z]{2}/)?artist/(?:[^/]+/)?(?:id)?(\d+)")),
    ("deezer", re.compile(r"deezer\.com/(?:[a-z]{2}/)?artist/(\d+)")),
    ("tidal", re.compile(r"tidal\.com/(?:browse/)?artist/(\d+)")),
    ("youtube_music", re.compile(r"music\.youtube\.com/channel/([A-Za-z0-9_-]+)")),
)


def normalize_isni(value: str) -> str:
    """Canonical 16-character ISNI: no spaces, upper-case check digit."""
    return re.sub(r"\s+", "", value).upper()


def parse_authority_url(url: str) -> tuple[str, str] | None:
    """Return ``(authority, id)`` for a recognised profile URL, else ``None``.

    >>> parse_authority_url("https://www.discogs.com/artist/82730")
    ('discogs', '82730')
    """
    for authority, pattern in _URL_PATTERNS:
        match = pattern.search(url)
        if match:
            value = match.group(1)
            if authority == "isni":
                value = normalize_isni(value)
                if len(value) != 16:
                    continue
            return authority, value
    return None


def cross_ids_from_urls(urls: list[str], exclude: str | None = None) -> dict[str, str]:
    """Collect the first id per authority found in *urls*.

    ``exclude`` drops the querying authority's own links.
    """
    found: dict[str, str] = {}
    for url in urls:
        parsed = parse_authority_url(url)
        if parsed is None:
            continue
        authority, value = parsed
        if authority != exclude and authority not in found:
            found[authority] = value
    return found
