"""Text normalization, phonetic keys and fuzzy similarity for autocomplete.

Two representations of a business name or typed query are used:

1) :func:`normalize_text` folds the input to lowercase ASCII (``unidecode``),
   strips punctuation and collapses whitespace. It is the dedupe key for
   suggestions and the input to everything else here.
2) :func:`to_phonetic` runs double metaphone per token so that misspellings
   such as ``"piza hut"`` still line up with ``"pizza hut"``. Business names
   are indexed with this key at import time and the name suggestion source
   queries it alongside the plain text.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable

from metaphone import doublemetaphone
from rapidfuzz.distance import Levenshtein
from unidecode import unidecode

logger = logging.getLogger(__name__)

# After transliteration we keep only Latin letters/digits/spaces.
_ASCII_ALNUM_SPACE_RE = re.compile(r"[^0-9a-z ]+")


def normalize_text(text: str | None) -> str:
    """Lowercase, transliterate to ASCII, drop punctuation and collapse spaces."""
    if not text:
        return ""
    transliterated = unidecode(text).lower()
    cleaned = _ASCII_ALNUM_SPACE_RE.sub(" ", transliterated)
    return " ".join(cleaned.split())


def _metaphone_tokens(tokens: Iterable[str]) -> list[str]:
    phonetics: list[str] = []
    for token in tokens:
        primary, secondary = doublemetaphone(token)
        for code in (primary, secondary):
            if code and code not in phonetics:
                phonetics.append(code)
    return phonetics


def to_phonetic(text: str | None) -> str:
    """Generate a space separated double-metaphone key for ``text``."""
    normalized = normalize_text(text)
    if not normalized:
        return ""
    phonetic = " ".join(_metaphone_tokens(normalized.split()))
    logger.debug("to_phonetic text=%r normalized=%r phonetic=%r", text, normalized, phonetic)
    return phonetic


def similarity(left: str, right: str) -> float:
    """Normalized Levenshtein similarity in ``[0, 1]`` of two normalized strings."""
    return Levenshtein.normalized_similarity(normalize_text(left), normalize_text(right))
