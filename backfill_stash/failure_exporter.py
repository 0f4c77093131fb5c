"""
failure_exporter.py

Write the failed rows of one request item to a CSV that can be fed straight
back in as the data file of a retry run.

Original data columns come first, in the order they were read; six fault
columns follow. The fault columns share the reserved `_error_` prefix, which no
template is expected to reference, so a retry run ignores them.
"""
from __future__ import annotations

import csv
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from .models import RequestResult
from .utility import PathLike, rfc3339


ERROR_COLUMNS = (
    "_error_status_code",
    "_error_message",
    "_error_url",
    "_error_method",
    "_error_timestamp",
    "_error_response_time_ms",
)
MAX_ERROR_MESSAGE = 500

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def clean_error_message(message: str) -> str:
    """Collapse newlines and runs of whitespace to single spaces; cap at 500 characters."""
    text = " ".join((message or "").split())
    if len(text) > MAX_ERROR_MESSAGE:
        text = text[:MAX_ERROR_MESSAGE - 3] + "..."
    return text


def failure_file_path(item_name: str, output_dir: PathLike = ".", now: Optional[datetime] = None) -> Path:
    now = now or datetime.now()
    safe = _UNSAFE_NAME_CHARS.sub("_", item_name.strip()) or "request"
    stem = f"failed_requests_{safe}_{now.strftime('%Y%m%d_%H%M%S')}"
    out = Path(output_dir)
    path = out / f"{stem}.csv"
    n = 2
    while path.exists():
        path = out / f"{stem}_{n}.csv"
        n += 1
    return path


def data_columns(failed_results: Sequence[RequestResult]) -> List[str]:
    """Union of the source-row columns, in first-seen order, without stale fault columns."""
    columns: List[str] = []
    seen = set()
    for r in failed_results:
        for col in r.source_row:
            # Rows from a previous failure file carry old fault columns; fresh ones replace them
            if col in seen or col in ERROR_COLUMNS:
                continue
            seen.add(col)
            columns.append(col)
    return columns


def export_failures(
    failed_results: Sequence[RequestResult],
    item_name: str,
    output_dir: PathLike = ".",
    now: Optional[datetime] = None,
) -> Optional[Path]:
    """
    Write `failed_results` to a new CSV and return its path.

    Returns None without touching the filesystem when there is nothing to export.
    """
    if not failed_results:
        return None
    columns = data_columns(failed_results)
    path = failure_file_path(item_name, output_dir, now)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open('w', encoding='utf-8', newline='') as f:
        w = csv.writer(f)
        w.writerow(columns + list(ERROR_COLUMNS))
        for r in failed_results:
            w.writerow([r.source_row.get(c, "") for c in columns] + [
                str(r.status_code),
                clean_error_message(r.error_detail),
                r.url,
                r.method,
                rfc3339(r.timestamp),
                str(int(r.response_time_ms)),
            ])
    return path
