"""Stage 0: Fetch"""

from .fetcher import (
    CsvTransactionSource,
    HttpTransactionSource,
    open_source,
    parse_amount,
    parse_date,
    record_to_item,
)

__all__ = [
    "CsvTransactionSource",
    "HttpTransactionSource",
    "open_source",
    "parse_amount",
    "parse_date",
    "record_to_item",
]
