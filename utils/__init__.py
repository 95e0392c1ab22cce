"""Utility modules"""

from .encoding import detect_encoding
from .fuzzy import best_match, fuzzy_match_string, keyword_overlap

__all__ = [
    "detect_encoding",
    "best_match",
    "fuzzy_match_string",
    "keyword_overlap",
]
