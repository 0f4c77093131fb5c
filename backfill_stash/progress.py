"""
progress.py

Throttled single-line progress display for one request item.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, NamedTuple, Optional, TextIO

import click

from .models import RequestResult


BAR_WIDTH = 40
RENDER_INTERVAL_S = 0.1


class ProgressSnapshot(NamedTuple):
    total: int
    processed: int
    success: int
    failure: int
    average_ms: float

    @property
    def percent(self) -> float:
        return self.processed / self.total * 100 if self.total else 100.0

    @property
    def eta_seconds(self) -> float:
        return self.average_ms * max(self.total - self.processed, 0) / 1000


def format_duration(seconds: float) -> str:
    if seconds < 1:
        return "0s"
    if seconds < 60:
        return f"{int(seconds)}s"
    return f"{int(seconds // 60)}m{int(seconds) % 60}s"


def format_progress_line(s: ProgressSnapshot, color: bool = True) -> str:
    filled = int(BAR_WIDTH * min(s.percent, 100.0) / 100)
    bar = "█" * filled + "░" * (BAR_WIDTH - filled)

    def style(text: str, **kw) -> str:
        return click.style(text, **kw) if color else text

    return (
        f"{style('Progress:', bold=True)} [{bar}] {s.processed}/{s.total} ({s.percent:.1f}%) | "
        f"{style(f'✓{s.success}', fg='green')} {style(f'✗{s.failure}', fg='red')} | "
        f"Avg: {int(s.average_ms)}ms | ETA: {format_duration(s.eta_seconds)}  "
    )


class ProgressReporter:
    """
    Running counters for one item plus a redraw at most every 100ms.

    Lives for one item only; nothing is shared with other items or runs.
    `update` is called from the stream consumer, never from the workers.
    """

    def __init__(
        self,
        total: int,
        quiet: bool = False,
        stream: Optional[TextIO] = None,
        interval_s: float = RENDER_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.total = total
        self.quiet = quiet
        self.stream = stream
        self.interval_s = interval_s
        self._clock = clock
        self._lock = threading.Lock()
        self._processed = 0
        self._success = 0
        self._failure = 0
        self._latency_ms = 0.0
        self._last_render = clock()
        self.renders = 0

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            avg = self._latency_ms / self._processed if self._processed else 0.0
            return ProgressSnapshot(self.total, self._processed, self._success, self._failure, avg)

    def update(self, result: RequestResult) -> None:
        with self._lock:
            self._processed += 1
            if result.success:
                self._success += 1
            else:
                self._failure += 1
            self._latency_ms += result.response_time_ms
            now = self._clock()
            due = now - self._last_render >= self.interval_s
            if due:
                self._last_render = now
        if due and not self.quiet:
            self._render()

    def finish(self) -> None:
        if self.quiet:
            return
        self._render()
        click.echo("", file=self.stream)

    def _render(self) -> None:
        self.renders += 1
        click.echo("\r" + format_progress_line(self.snapshot()), nl=False, file=self.stream)
