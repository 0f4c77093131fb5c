"""
metrics.py

Per-item aggregation of request results and the run-level metrics document.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .models import ItemMetrics, RequestResult, RunMetrics
from .utility import PathLike, rfc3339, write_yaml_file


class MetricsAggregator:
    """
    Single consumer of one item's result stream.

    min/max/sum are order independent, so the final ItemMetrics does not
    depend on the order in which workers finished their rows.
    """

    def __init__(self, name: str) -> None:
        self.metrics = ItemMetrics(name=name, started_at=datetime.now(timezone.utc))

    def record(self, result: RequestResult) -> None:
        m = self.metrics
        m.total += 1
        if result.success:
            m.success_count += 1
        else:
            m.failure_count += 1
            m.failed_results.append(result)
        t = result.response_time_ms
        if m.min_time_ms is None or t < m.min_time_ms:
            m.min_time_ms = t
        if m.max_time_ms is None or t > m.max_time_ms:
            m.max_time_ms = t
        m.total_time_ms += t

    def consume(self, results: Iterable[RequestResult]) -> ItemMetrics:
        for r in results:
            self.record(r)
        return self.finish()

    def finish(self) -> ItemMetrics:
        self.metrics.finished_at = datetime.now(timezone.utc)
        return self.metrics


def item_metrics_to_dict(item: ItemMetrics) -> Dict[str, Any]:
    return {
        "name": item.name,
        "total_requests": item.total,
        "successful": item.success_count,
        "failed": item.failure_count,
        "success_rate_pct": round(item.success_rate_pct, 2),
        "timing": {
            "avg_ms": int(item.average_ms),
            "min_ms": int(item.min_time_ms or 0),
            "max_ms": int(item.max_time_ms or 0),
            "total_ms": int(item.total_time_ms),
        },
        "duration_seconds": round(item.duration_seconds, 3),
        "failure_file": item.failure_file,
    }


def run_metrics_to_dict(run: RunMetrics) -> Dict[str, Any]:
    return {
        "collection_name": run.collection_name,
        "collection_file": run.collection_file,
        "csv_file": run.csv_file,
        "start_time": rfc3339(run.started_at),
        "end_time": rfc3339(run.finished_at) if run.finished_at else None,
        "duration_seconds": round(run.duration_seconds, 3),
        "total_records": run.total_records,
        "summary": run.summary(),
        "items": [item_metrics_to_dict(i) for i in run.items],
    }


def default_metrics_path(output_dir: PathLike, now: Optional[datetime] = None) -> Path:
    now = now or datetime.now()
    return Path(output_dir) / f"metrics_{now.strftime('%Y%m%d_%H%M%S')}.json"


def save_metrics(run: RunMetrics, path: PathLike) -> Path:
    """Write the metrics document as YAML for .yml/.yaml paths, JSON otherwise."""
    p = Path(path)
    data = run_metrics_to_dict(run)
    if p.suffix.lower() in (".yml", ".yaml"):
        write_yaml_file(p, data)
        return p
    if p.parent and not p.parent.exists():
        p.parent.mkdir(parents=True, exist_ok=True)
    with p.open('w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    return p
