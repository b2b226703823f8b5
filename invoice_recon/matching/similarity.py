"""String similarity on canonical keys, backed by rapidfuzz."""

from rapidfuzz.distance import Levenshtein


def levenshtein(a: str, b: str) -> int:
    """Edit distance (insertions, deletions, substitutions)."""
    return int(Levenshtein.distance(a, b))


def similarity(a: str, b: str) -> float:
    """Normalized similarity in [0, 1]: 1 - distance / longer length.

    Two empty strings are identical (1.0). Symmetric.
    """
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest
