"""Stage 4: Export"""

from .csv_writer import CSV_COLUMNS, CsvBatchWriter, item_to_row

__all__ = ["CSV_COLUMNS", "CsvBatchWriter", "item_to_row"]
