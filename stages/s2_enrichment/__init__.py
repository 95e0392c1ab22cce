"""Stage 2: Enrichment"""

from .enricher import EmailEnricher, no_email_lookup
from .graph_search import GraphEmailSearch
from .matcher import best_email_match, extract_keywords, score_email

__all__ = [
    "EmailEnricher",
    "no_email_lookup",
    "GraphEmailSearch",
    "best_email_match",
    "extract_keywords",
    "score_email",
]
