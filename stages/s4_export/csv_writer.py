"""Stage 4: Export - Write batches of items to CSV files"""

import asyncio
import datetime as dt
import os
import tempfile
from pathlib import Path
from typing import List, Sequence, Union

import pandas as pd

from core.exceptions import ExportError
from core.logging_config import get_logger
from core.models import WorkItem

logger = get_logger(__name__)

CSV_COLUMNS = [
    "Date",
    "Amount",
    "Description",
    "Category",
    "Confidence",
    "Email Subject",
    "Email Snippet",
    "Status",
]

UNCATEGORIZED = "Uncategorized"


def item_to_row(item: WorkItem) -> List[str]:
    """One CSV row for an item"""
    return [
        item.date.isoformat(),
        f"{item.amount:.2f}",
        item.display_description,
        item.category or UNCATEGORIZED,
        f"{item.confidence:.2f}" if item.confidence is not None else "",
        item.email_subject or "",
        item.email_snippet or "",
        item.status.value,
    ]


class CsvBatchWriter:
    """Writes each batch to its own CSV file.

    Files are written to a temporary name in the output directory and
    renamed into place, so a reader never sees a partial batch. Names
    embed a timestamp and a per-writer batch sequence number.
    """

    def __init__(
        self,
        output_dir: Union[str, Path],
        file_name_format: str = "transactions_{timestamp}.csv",
    ):
        self.output_dir = Path(output_dir)
        self.file_name_format = file_name_format
        self.sequence = 0

    def next_path(self) -> Path:
        self.sequence += 1
        now = dt.datetime.now()
        timestamp = f"{now:%Y%m%d_%H%M%S}_{self.sequence:04d}"
        return self.output_dir / self.file_name_format.format(timestamp=timestamp)

    async def __call__(self, batch: Sequence[WorkItem]) -> Path:
        path = self.next_path()
        rows = [item_to_row(item) for item in batch]
        await asyncio.to_thread(self._write, path, rows)
        logger.debug("csv_batch_written", path=str(path), rows=len(rows))
        return path

    def _write(self, path: Path, rows: List[List[str]]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            df = pd.DataFrame(rows, columns=CSV_COLUMNS)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        except OSError as e:
            raise ExportError(f"Cannot prepare {path}: {e}", path=str(path)) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                df.to_csv(f, index=False)
            os.replace(tmp_name, path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise ExportError(f"Failed to write {path}: {e}", path=str(path)) from e
