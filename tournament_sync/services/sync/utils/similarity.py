"""String similarity for team and club name matching.

Case-insensitive score in [0, 1]:
- identical strings: 1.0
- either string empty: 0.0
- one string contains the other: 0.9
- otherwise: 1 - levenshtein / longest length
"""
from rapidfuzz.distance import Levenshtein

SUBSTRING_SCORE = 0.9


def levenshtein(a: str, b: str) -> int:
    """Edit distance with unit insert/delete/substitute costs."""
    return Levenshtein.distance(a, b)


def similarity(a: str, b: str) -> float:
    """
    Similarity of two names.

    Examples:
        >>> similarity("Evergem", "evergem")
        1.0
        >>> similarity("Lokerse BC", "Lokerse")
        0.9
        >>> similarity("", "Evergem")
        0.0
    """
    s1 = (a or "").lower()
    s2 = (b or "").lower()

    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0

    if s1 in s2 or s2 in s1:
        return SUBSTRING_SCORE

    return 1.0 - levenshtein(s1, s2) / max(len(s1), len(s2))
