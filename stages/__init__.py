"""Pipeline stages"""

from .s0_fetch import CsvTransactionSource, HttpTransactionSource, open_source
from .s1_cleaning import DescriptionCleaner
from .s2_enrichment import EmailEnricher, GraphEmailSearch
from .s3_categorization import Categorizer, LLMCategorizer
from .s4_export import CsvBatchWriter

__all__ = [
    "CsvTransactionSource",
    "HttpTransactionSource",
    "open_source",
    "DescriptionCleaner",
    "EmailEnricher",
    "GraphEmailSearch",
    "Categorizer",
    "LLMCategorizer",
    "CsvBatchWriter",
]
