from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorKind(str, Enum):
    InvalidURL = "InvalidURL"
    RequestConstructionError = "RequestConstructionError"
    TransportError = "TransportError"
    ResponseReadError = "ResponseReadError"
    NonSuccessStatus = "NonSuccessStatus"


class RequestResult(BaseModel):
    """Outcome of executing one request template against one data row."""

    model_config = ConfigDict(frozen=True)

    request_name: str
    success: bool
    status_code: int = 0
    response_time_ms: float = 0.0
    error_kind: Optional[ErrorKind] = None
    error_detail: str = ""
    # First 100 characters of the response body
    message: str = ""
    url: str = ""
    method: str = ""
    timestamp: datetime
    source_row: Dict[str, str]


class ItemMetrics(BaseModel):
    """Accumulated statistics for every execution of one request template."""

    name: str
    total: int = 0
    success_count: int = 0
    failure_count: int = 0
    min_time_ms: Optional[float] = None
    max_time_ms: Optional[float] = None
    total_time_ms: float = 0.0
    failed_results: List[RequestResult] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failure_file: Optional[str] = None

    @property
    def average_ms(self) -> float:
        done = self.success_count + self.failure_count
        return self.total_time_ms / done if done else 0.0

    @property
    def success_rate_pct(self) -> float:
        return self.success_count / self.total * 100 if self.total else 0.0

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()


class RunMetrics(BaseModel):
    collection_name: str
    collection_file: str = ""
    csv_file: str = ""
    started_at: datetime
    finished_at: Optional[datetime] = None
    total_records: int = 0
    items: List[ItemMetrics] = Field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def summary(self) -> Dict[str, Any]:
        total = sum(i.total for i in self.items)
        ok = sum(i.success_count for i in self.items)
        failed = sum(i.failure_count for i in self.items)
        duration = self.duration_seconds
        return {
            "total_requests": total,
            "successful": ok,
            "failed": failed,
            "success_rate_pct": round(ok / total * 100, 2) if total else 0.0,
            "throughput_rps": round(total / duration, 2) if duration > 0 else 0.0,
        }
