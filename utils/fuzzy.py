"""Fuzzy matching utilities"""

from typing import Iterable, List, Optional, Tuple

from rapidfuzz import fuzz, process, utils


def fuzzy_match_string(
    text: str,
    candidates: List[str],
    threshold: int = 80
) -> Optional[str]:
    """
    Fuzzy match a string against a list of candidates

    Args:
        text: Text to match
        candidates: List of candidate strings
        threshold: Match threshold (0-100)

    Returns:
        Best match if above threshold, None otherwise
    """
    match = best_match(text, candidates)
    if match and match[1] >= threshold:
        return match[0]
    return None


def best_match(text: str, candidates: Iterable[str]) -> Optional[Tuple[str, float]]:
    """Best candidate and its 0-100 score, compared case-insensitively"""
    candidates = list(candidates)
    if not text or not candidates:
        return None

    result = process.extractOne(
        text,
        candidates,
        scorer=fuzz.WRatio,
        processor=utils.default_process,
    )
    if result is None:
        return None
    return result[0], result[1]


def keyword_overlap(left: Iterable[str], right: Iterable[str]) -> List[str]:
    """Keywords present in both collections, in ``left`` order"""
    right_set = set(right)
    seen = set()
    shared = []
    for word in left:
        if word in right_set and word not in seen:
            seen.add(word)
            shared.append(word)
    return shared
