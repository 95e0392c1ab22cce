"""Stage 0: Fetch - Read transactions from a CSV file or a JSON endpoint"""

import asyncio
import datetime as dt
import re
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import AsyncIterator, Dict, Iterator, List, Optional, Union

import httpx
import pandas as pd
from pandas.io.parsers import TextFileReader

from core.exceptions import SourceError
from core.logging_config import get_logger
from core.models import WorkItem
from utils.encoding import detect_encoding

logger = get_logger(__name__)

# Canonical field -> accepted header names (compared lower-cased)
COLUMN_ALIASES: Dict[str, List[str]] = {
    "id": ["id", "transaction id", "transaction_id", "reference"],
    "date": ["date", "transaction date", "posted date", "posting date", "booking date"],
    "amount": ["amount", "transaction amount", "value", "sum"],
    "description": ["description", "details", "memo", "narrative", "transaction description"],
    "counterparty": ["counterparty", "merchant", "payee", "beneficiary"],
}

# Column order assumed when the file has no recognizable header
POSITIONAL_COLUMNS = ["date", "amount", "description", "counterparty"]

DEFAULT_CHUNK_SIZE = 1000

DATE_FORMATS = ["%Y-%m-%d", "%d/%m/%Y", "%m/%d/%Y", "%d.%m.%Y", "%Y/%m/%d", "%d-%m-%Y"]

_AMOUNT_NOISE = re.compile(r"[^\d,.\-+()]")


def parse_amount(value: Union[str, int, float, Decimal]) -> Decimal:
    """
    Parse a signed monetary amount

    Accepts currency symbols, thousands separators, decimal commas
    ("12,50") and accounting negatives ("(12.50)").

    Raises:
        ValueError: If no amount can be read
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    text = _AMOUNT_NOISE.sub("", str(value).strip())
    negative = text.startswith("(") and text.endswith(")")
    text = text.strip("()")
    if not text:
        raise ValueError(f"Empty amount: {value!r}")

    if "," in text and "." in text:
        # Whichever separator comes last is the decimal point
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        head, _, tail = text.rpartition(",")
        text = f"{head.replace(',', '')}.{tail}" if len(tail) <= 2 else text.replace(",", "")

    try:
        amount = Decimal(text)
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e
    return -amount if negative else amount


def parse_date(value: Union[str, dt.date, dt.datetime]) -> dt.date:
    """
    Parse a transaction date

    Raises:
        ValueError: If the value matches no known format
    """
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value

    text = str(value).strip()
    try:
        return dt.datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return dt.datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {value!r}")


def record_to_item(record: Dict[str, object]) -> WorkItem:
    """
    Build a fetched WorkItem from a canonical record

    Raises:
        ValueError: If date, amount or description is missing or invalid
    """
    description = str(record.get("description") or "").strip()
    if not description:
        raise ValueError("Missing description")

    fields = {
        "date": parse_date(record.get("date") or ""),
        "amount": parse_amount(record.get("amount") if record.get("amount") is not None else ""),
        "description": description,
    }
    if record.get("id"):
        fields["id"] = str(record["id"])
    counterparty = str(record.get("counterparty") or "").strip()
    if counterparty:
        fields["counterparty"] = counterparty
    return WorkItem(**fields)


def _canonical_header(header: List[str]) -> Optional[Dict[int, str]]:
    """Map column positions to canonical names, or None if not a header row"""
    mapping = {}
    for position, name in enumerate(header):
        label = str(name).strip().lower()
        for canonical, aliases in COLUMN_ALIASES.items():
            if label in aliases and canonical not in mapping.values():
                mapping[position] = canonical
                break
    required = {"date", "amount", "description"}
    return mapping if required.issubset(mapping.values()) else None
class CsvTransactionSource:
    """Transactions from a delimited text file

    The file is read ``chunk_size`` rows at a time. Async iteration reads
    each chunk in a worker thread so the event loop keeps running; plain
    iteration reads inline. Rows that cannot be parsed are skipped and
    counted in ``skipped_rows``.
    """

    def __init__(
        self,
        path: Union[str, Path],
        encoding: Optional[str] = None,
        delimiter: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self.path = Path(path)
        self.encoding = encoding
        self.delimiter = delimiter
        self.chunk_size = chunk_size
        self.skipped_rows = 0
        self._columns: Optional[Dict[int, str]] = None
        self._row = 0

    @property
    def name(self) -> str:
        return str(self.path)

    def __iter__(self) -> Iterator[WorkItem]:
        reader = self._open()
        if reader is None:
            return
        with reader:
            while True:
                chunk = self._next_chunk(reader)
                if chunk is None:
                    break
                yield from self._chunk_items(chunk)

    async def __aiter__(self) -> AsyncIterator[WorkItem]:
        reader = await asyncio.to_thread(self._open)
        if reader is None:
            return
        with reader:
            while True:
                chunk = await asyncio.to_thread(self._next_chunk, reader)
                if chunk is None:
                    break
                for item in self._chunk_items(chunk):
                    yield item

    def _chunk_items(self, chunk: pd.DataFrame) -> Iterator[WorkItem]:
        rows = chunk
        if self._columns is None:
            header = _canonical_header(chunk.iloc[0].tolist())
            has_header = header is not None
            if has_header:
                rows = chunk.iloc[1:]
                self._row += 1
            else:
                header = {i: name for i, name in enumerate(POSITIONAL_COLUMNS) if i < len(chunk.columns)}
            self._columns = header
            logger.info("source_opened", source=self.name, header=has_header, chunk_size=self.chunk_size)

        for row in rows.itertuples(index=False):
            self._row += 1
            values = list(row)
            record = {name: values[position] for position, name in self._columns.items()}
            try:
                yield record_to_item(record)
            except ValueError as e:
                self.skipped_rows += 1
                logger.warning("source_row_skipped", source=self.name, row=self._row, error=str(e))

    def _open(self) -> Optional[TextFileReader]:
        """Start a chunked read; None when the file holds no rows"""
        if not self.path.is_file():
            raise SourceError(f"File not found: {self.path}", source=self.name)

        self._columns = None
        self._row = 0
        try:
            encoding = self.encoding or detect_encoding(self.path)
            delimiter = self.delimiter or self._detect_delimiter(encoding)
            return pd.read_csv(
                self.path,
                encoding=encoding,
                delimiter=delimiter,
                header=None,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                on_bad_lines='skip',
                chunksize=self.chunk_size
            )
        except pd.errors.EmptyDataError:
            logger.warning("source_empty", source=self.name)
            return None
        except (OSError, UnicodeDecodeError, pd.errors.ParserError) as e:
            raise SourceError(f"Failed to read CSV file: {e}", source=self.name) from e

    def _next_chunk(self, reader: TextFileReader) -> Optional[pd.DataFrame]:
        try:
            return next(reader, None)
        except (OSError, UnicodeDecodeError, pd.errors.ParserError) as e:
            raise SourceError(f"Failed to read CSV file: {e}", source=self.name) from e

    def _detect_delimiter(self, encoding: str) -> str:
        """Detect CSV delimiter"""
        delimiters = [',', ';', '\t', '|']

        with open(self.path, 'r', encoding=encoding) as f:
            sample = f.read(4096)

        scores = {}
        for delim in delimiters:
            counts = [line.count(delim) for line in sample.split('\n')[:10] if line.strip()]
            if counts and min(counts) > 0:
                avg = sum(counts) / len(counts)
                variance = sum((c - avg) ** 2 for c in counts) / len(counts)
                scores[delim] = min(counts) if variance < 2 else 0

        return max(scores, key=scores.get) if scores else ','


class HttpTransactionSource:
    """Transactions from a JSON endpoint returning ``{"transactions": [...]}``"""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.skipped_rows = 0
        self._client = client

    @property
    def name(self) -> str:
        return self.url

    async def __aiter__(self) -> AsyncIterator[WorkItem]:
        payload = await self._fetch()
        transactions = payload.get("transactions") if isinstance(payload, dict) else None
        if not transactions:
            logger.warning("source_empty", source=self.name)
            return

        logger.info("source_opened", source=self.name, rows=len(transactions))
        for index, raw in enumerate(transactions):
            record = {str(key).lower(): value for key, value in raw.items()} if isinstance(raw, dict) else {}
            try:
                yield record_to_item(record)
            except ValueError as e:
                self.skipped_rows += 1
                logger.warning("source_row_skipped", source=self.name, row=index, error=str(e))

    async def _fetch(self):
        logger.info("source_fetching", source=self.name)
        try:
            if self._client is not None:
                response = await self._client.get(self.url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(self.url)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise SourceError(f"Failed to fetch transactions: {e}", source=self.name) from e
        except ValueError as e:
            raise SourceError(f"Endpoint did not return JSON: {e}", source=self.name) from e


def open_source(
    identifier: str,
    encoding: Optional[str] = None,
    delimiter: Optional[str] = None,
    timeout: float = 30.0,
) -> Union[CsvTransactionSource, HttpTransactionSource]:
    """Pick the source implementation for a path or URL"""
    if identifier.startswith(("http://", "https://")):
        return HttpTransactionSource(identifier, timeout=timeout)
    return CsvTransactionSource(identifier, encoding=encoding, delimiter=delimiter)
