"""Text normalization utilities for artist names and resolution queries.

Two concerns live here:

1. **Query keys** -- :func:`normalize_query` turns free text into the
   key used for cache lookup and as matching input.  It lowercases,
   folds diacritics ("Beyoncé" -> "beyonce"), spells out ``&``, drops
   punctuation, strips a leading "the" and collapses whitespace.  A
   second, *stripped* variant also removes trailing qualifiers such as
   "band" or "group".  The stripped variant is only ever a fallback key:
   "Smith Band" and "Smith" may be different acts.

2. **Name similarity** -- :func:`name_similarity` is a normalized
   Levenshtein similarity in [0, 1] computed with rapidfuzz.
"""

import re
import unicodedata
from dataclasses import dataclass

from rapidfuzz.distance import Levenshtein

_LEADING_ARTICLE = re.compile(r"^the\s+")

# Trailing qualifiers that are often dropped in credits ("Arcade Fire Band").
_QUALIFIER_SUFFIXES: tuple[str, ...] = (
    "band",
    "group",
    "orchestra",
    "ensemble",
    "trio",
    "quartet",
)
_QUALIFIER_PATTERN = re.compile(r"\s+(?:" + "|".join(_QUALIFIER_SUFFIXES) + r")$")

_AMPERSAND = re.compile(r"\s*&\s*")
_NON_WORD = re.compile(r"[^\w\s]")
_MULTI_SPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class NormalizedQuery:
    """Normalized forms of a raw query string.

    Attributes
    ----------
    key:
        Primary key: lowercased, folded, article-stripped text.
    stripped:
        ``key`` with any trailing qualifier suffix removed.  Equal to
        ``key`` when no suffix was present.
    """

    key: str
    stripped: str

    @property
    def has_fallback(self) -> bool:
        return self.stripped != self.key

    def variants(self) -> tuple[str, ...]:
        """Return the lookup variants in the order they should be tried."""
        if self.has_fallback:
            return (self.key, self.stripped)
        return (self.key,)


def fold_diacritics(text: str) -> str:
    """Remove combining marks after NFKD decomposition ("Sigur Rós" -> "Sigur Ros")."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_name(name: str) -> str:
    """Normalize an artist name into its primary comparison key.

    Args:
        name: Raw artist name or query text.

    Returns:
        The normalized key; empty string when nothing word-like remains.
    """
    normalized = fold_diacritics(name).lower()
    normalized = _AMPERSAND.sub(" and ", normalized)
    # Punctuation is dropped rather than spaced so "AC/DC" and "ACDC" agree.
    normalized = _NON_WORD.sub("", normalized)
    normalized = normalized.replace("_", " ")
    normalized = _MULTI_SPACE.sub(" ", normalized).strip()

    stripped = _LEADING_ARTICLE.sub("", normalized)
    # "The The" must not collapse to an empty key.
    return stripped or normalized


def strip_qualifier(key: str) -> str:
    """Drop one trailing qualifier suffix from an already normalized key."""
    stripped = _QUALIFIER_PATTERN.sub("", key).strip()
    return stripped or key


def normalize_query(text: str) -> NormalizedQuery:
    """Produce the primary and fallback lookup keys for *text*.

    Examples
    --------
    >>> normalize_query("The Beatles")
    NormalizedQuery(key='beatles', stripped='beatles')
    >>> normalize_query("E Street Band")
    NormalizedQuery(key='e street band', stripped='e street')
    """
    key = normalize_name(text)
    return NormalizedQuery(key=key, stripped=strip_qualifier(key))


def name_similarity(left: str, right: str) -> float:
    """Edit-distance similarity between two already normalized names.

    Returns:
        1.0 for identical strings, 0.0 when either side is empty.
    """
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    return float(Levenshtein.normalized_similarity(left, right))
