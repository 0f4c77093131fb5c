"""
data_source.py

Load tabular input (CSV) into data rows. The first record names the columns;
every following record becomes one row keyed by those names.
"""
from __future__ import annotations

import csv
from pathlib import Path
from types import MappingProxyType
from typing import List, Mapping, NamedTuple, Tuple, Union


PathLike = Union[str, Path]
DataRow = Mapping[str, str]


class DataSourceError(ValueError):
    """The data file is unreadable or has no usable header."""


class DataSet(NamedTuple):
    columns: Tuple[str, ...]
    rows: Tuple[DataRow, ...]


def rows_from_records(records: List[List[str]]) -> DataSet:
    """
    Normalize raw records (header first) into a DataSet.

    Short rows are padded with empty strings and cells beyond the header are
    dropped. Rows are read-only mappings so they can be shared by all workers.
    """
    if not records:
        raise DataSourceError("CSV file is empty")
    header = tuple(records[0])
    if not header:
        raise DataSourceError("CSV file has no headers")
    rows: List[DataRow] = []
    for rec in records[1:]:
        row = {}
        for j, col in enumerate(header):
            row[col] = rec[j] if j < len(rec) else ""
        rows.append(MappingProxyType(row))
    return DataSet(columns=header, rows=tuple(rows))


def read_csv_rows(path: PathLike) -> DataSet:
    p = Path(path)
    if not p.exists() or not p.is_file():
        raise DataSourceError(f"CSV file not found: {p}")
    try:
        # utf-8-sig so spreadsheet exports with a BOM keep a clean first column name
        with p.open('r', encoding='utf-8-sig', newline='') as f:
            records = [rec for rec in csv.reader(f) if rec]
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise DataSourceError(f"Error reading CSV {p}: {e}") from e
    return rows_from_records(records)
