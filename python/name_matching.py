"""
Partner name normalization and similarity scoring.

Names are canonicalized before comparison: lower-cased, accents removed,
punctuation replaced with spaces and legal-entity suffix tokens dropped.
Similarity is the normalized Indel ratio from rapidfuzz scaled to [0, 1].
"""

import re
import unicodedata
from typing import Optional

from rapidfuzz import fuzz

# Fuzzy name matches scoring below this value are discarded. Not configurable.
FUZZY_MATCH_THRESHOLD = 0.95

LEGAL_SUFFIXES = frozenset([
    'ltd', 'limited', 'inc', 'incorporated', 'corp', 'corporation',
    'llc', 'llp', 'lp', 'gmbh', 'ag', 'sa', 'sas', 'bv', 'nv',
    'pty', 'pvt', 'private', 'public', 'co', 'company', '&', 'and',
])

_NON_ALNUM_PATTERN = re.compile(r'[^\w\s]|_')
_WHITESPACE_PATTERN = re.compile(r'\s+')
_TAX_ID_SEPARATORS = re.compile(r'[\s\-\.\,\/]')


def normalize_name(name: Optional[str]) -> str:
    """Normalize a partner name for duplicate comparison

    Args:
        name: Raw partner name (can be None)

    Returns:
        Normalized name, or empty string if name is None/empty
    """
    if not name:
        return ""

    normalized = str(name).strip().lower()
    normalized = ''.join(c for c in unicodedata.normalize('NFD', normalized)
                         if unicodedata.category(c) != 'Mn')
    normalized = _NON_ALNUM_PATTERN.sub(' ', normalized)

    # Suffixes only ever match whole tokens, so "cooper" keeps its "co"
    tokens = [t for t in _WHITESPACE_PATTERN.split(normalized)
              if t and t not in LEGAL_SUFFIXES]
    return ' '.join(tokens)


def name_similarity(left: str, right: str) -> float:
    """Similarity of two normalized names in [0, 1]

    Returns 1.0 only for identical strings and 0.0 when either side is empty.
    """
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    score = fuzz.ratio(left, right) / 100.0
    return max(0.0, min(1.0, score))


def normalize_tax_id(value: Optional[str]) -> str:
    """Normalize a tax identifier: separators removed, upper-cased"""
    if not value:
        return ""
    return _TAX_ID_SEPARATORS.sub('', str(value)).upper()
