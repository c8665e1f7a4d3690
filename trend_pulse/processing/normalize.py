"""
Topic normalization.

Turns a raw topic string from an upstream annotator into a canonical topic
key so that variants like "The Biden Administration" and "biden" compare
equal. Normalization is pure, total and idempotent.
"""

import logging
import re
import unicodedata
from typing import Any, Iterable, Set

logger = logging.getLogger(__name__)

LEADING_ARTICLES = frozenset({"the", "a", "an"})
GENERIC_SUFFIXES = frozenset({"party", "administration", "government"})

# Punctuation and symbols at either edge of a token
_EDGE_PUNCTUATION = re.compile(r"^[\W_]+|[\W_]+$", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


def _fold(text: str) -> str:
    """NFKC + lowercase, repeated until stable."""
    for _ in range(3):
        folded = unicodedata.normalize("NFKC", text).lower()
        if folded == text:
            break
        text = folded
    return text


def normalize_topic(raw_topic: Any) -> str:
    """
    Canonicalize a raw topic string.

    Args:
        raw_topic: Topic text as produced by upstream extraction

    Returns:
        Canonical topic key, or "" for empty/garbage input

    Rules:
        - Unicode NFKC and lowercase
        - Punctuation stripped from the edges of every token
        - Whitespace collapsed
        - Leading "the"/"a"/"an" and trailing "party"/"administration"/
          "government" tokens removed, never leaving an empty key
    """
    if not isinstance(raw_topic, str):
        return ""

    text = _fold(raw_topic)
    tokens = [_EDGE_PUNCTUATION.sub("", token) for token in text.split()]
    tokens = [token for token in tokens if token]

    while len(tokens) > 1 and tokens[0] in LEADING_ARTICLES:
        tokens = tokens[1:]
    while len(tokens) > 1 and tokens[-1] in GENERIC_SUFFIXES:
        tokens = tokens[:-1]

    return " ".join(tokens)


def is_empty_key(key: str) -> bool:
    """Check whether a canonical key must be discarded."""
    return not key or not key.strip()


def display_form(raw_topic: str) -> str:
    """Trim and collapse whitespace for use as a display label."""
    if not isinstance(raw_topic, str):
        return ""
    return _WHITESPACE.sub(" ", raw_topic).strip()


def normalize_terms(terms: Iterable[str]) -> Set[str]:
    """Canonical keys of a term list, without empties."""
    return {key for key in (normalize_topic(term) for term in terms) if key}
