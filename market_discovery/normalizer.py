"""
Text normalization shared by search, similarity and feed composition.

Every component compares text through normalize() so that a query, a
platform name and a keyword list are matched the same way everywhere.
"""

import re
from typing import Optional, Set

from .errors import MalformedPriceError

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]", re.ASCII)
_WORD_SPLIT_RE = re.compile(r"\W+", re.ASCII)
_PRICE_STRIP_RE = re.compile(r"[^\d.]", re.ASCII)


def normalize(text: Optional[str]) -> str:
    """
    Lowercase text and drop every character outside [a-z0-9] and whitespace.

    Total over all inputs: None and the empty string both give "".
    Idempotent, so normalize(normalize(s)) == normalize(s).
    """
    if not text:
        return ""
    return _NON_ALNUM_RE.sub("", str(text).lower())


def keyword_set(keywords: Optional[str]) -> Set[str]:
    """
    Split a comma-separated keyword field into a set of tags.

    Tags are trimmed and lowercased; single-character tags are dropped.
    """
    if not keywords:
        return set()
    tags = (k.strip() for k in keywords.lower().split(","))
    return {k for k in tags if len(k) > 1}


def word_set(text: Optional[str]) -> Set[str]:
    """Lowercased word tokens longer than two characters."""
    if not text:
        return set()
    return {w for w in _WORD_SPLIT_RE.split(text.lower()) if len(w) > 2}


def parse_price(raw) -> float:
    """
    Parse a display price such as "₹1,299.00" into a float.

    Everything but digits and dots is stripped first.

    Raises:
        MalformedPriceError: If nothing numeric survives the strip.
    """
    if raw is None:
        raise MalformedPriceError(raw)
    if isinstance(raw, (int, float)):
        return float(raw)
    cleaned = _PRICE_STRIP_RE.sub("", str(raw))
    if not cleaned:
        raise MalformedPriceError(raw)
    try:
        return float(cleaned)
    except ValueError:
        raise MalformedPriceError(raw) from None


def price_or_default(raw, default: float = 0.0) -> float:
    """parse_price() that falls back to default instead of raising."""
    try:
        return parse_price(raw)
    except MalformedPriceError:
        return default
