"""
dispatcher.py

Fan one request template out over every data row with a fixed number of
worker threads, and stream back one RequestResult per row.

All rows are queued before any worker starts; each worker drains the queue
until it is empty and then exits. The result stream ends only after every
worker has been joined. Per-row failures are turned into failed results and
never stop the other rows.
"""
from __future__ import annotations

import queue
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Iterator, NamedTuple, Optional, Sequence

from urllib3 import HTTPHeaderDict

from .auth import Auth, apply_auth, resolve_auth
from .config_schema import LeafNode, RequestTemplate
from .data_source import DataRow
from .models import ErrorKind, RequestResult
from .request_manager import RequestManager, ResponseReadError, TransportError
from .template_utility import substitute, substitute_body
from .url_builder import InvalidURLError, build_url


# RFC 7230 token, used for both methods and header names
_TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_MESSAGE_LIMIT = 100


class RequestConstructionError(ValueError):
    """The method, headers or body cannot form a valid HTTP request."""


class PreparedRequest(NamedTuple):
    method: str
    url: str
    headers: HTTPHeaderDict
    body: Optional[bytes]


def render_request(template: RequestTemplate, row: DataRow, auth: Optional[Auth]) -> PreparedRequest:
    """
    Render a request template for one data row.

    Order matters: auth headers go in first, then the explicit template headers
    (which therefore replace an auth header of the same name), then the default
    JSON Content-Type when a body is present and none was set.
    """
    url = build_url(template.url_template, template.query_params, row)

    body = ""
    if template.body_template:
        body = substitute_body(template.body_template, row)

    method = template.method
    if not _TOKEN_RE.match(method or ""):
        raise RequestConstructionError(f"invalid HTTP method {method!r}")

    headers = HTTPHeaderDict()
    try:
        apply_auth(headers, auth, row)
    except UnicodeEncodeError as e:
        raise RequestConstructionError(f"auth credentials cannot be encoded: {e}") from e
    for h in template.headers:
        if not h.key or not h.value:
            continue
        headers[h.key] = substitute(h.value, row)

    if body and "Content-Type" not in headers:
        headers["Content-Type"] = "application/json"

    _check_headers(headers)
    return PreparedRequest(method, url, headers, body.encode("utf-8") if body else None)


def _check_headers(headers: HTTPHeaderDict) -> None:
    # http.client sends header values as latin-1 and rejects CR/LF
    for name, value in headers.items():
        if not _TOKEN_RE.match(name):
            raise RequestConstructionError(f"invalid header name {name!r}")
        if "\r" in value or "\n" in value:
            raise RequestConstructionError(f"invalid value for header {name!r}: contains a line break")
        try:
            value.encode("latin-1")
        except UnicodeEncodeError as e:
            raise RequestConstructionError(f"invalid value for header {name!r}: not latin-1 encodable") from e


def execute_row(
    template: RequestTemplate,
    row: DataRow,
    auth: Optional[Auth],
    request_manager: RequestManager,
) -> RequestResult:
    """Render and send one request; every failure is reported in the result, never raised."""
    started = datetime.now(timezone.utc)
    t0 = time.perf_counter()

    def _result(**fields) -> RequestResult:
        fields.setdefault("response_time_ms", (time.perf_counter() - t0) * 1000)
        return RequestResult(
            request_name=template.name,
            method=template.method,
            timestamp=started,
            source_row=dict(row),
            **fields,
        )

    try:
        prepared = render_request(template, row, auth)
    except InvalidURLError as e:
        return _result(success=False, error_kind=ErrorKind.InvalidURL, error_detail=f"Error processing URL: {e}")
    except RequestConstructionError as e:
        return _result(
            success=False,
            error_kind=ErrorKind.RequestConstructionError,
            error_detail=f"Error creating request: {e}",
        )

    try:
        status, _, text = request_manager.request(prepared.method, prepared.url, prepared.headers, prepared.body)
    except TransportError as e:
        return _result(success=False, url=prepared.url, error_kind=ErrorKind.TransportError, error_detail=str(e))
    except ResponseReadError as e:
        return _result(
            success=False,
            url=prepared.url,
            status_code=e.status,
            error_kind=ErrorKind.ResponseReadError,
            error_detail=str(e),
        )

    elapsed_ms = (time.perf_counter() - t0) * 1000
    message = text if len(text) <= _MESSAGE_LIMIT else text[:_MESSAGE_LIMIT] + "..."
    if 200 <= status < 300:
        return _result(success=True, url=prepared.url, status_code=status, message=message, response_time_ms=elapsed_ms)
    return _result(
        success=False,
        url=prepared.url,
        status_code=status,
        message=message,
        response_time_ms=elapsed_ms,
        error_kind=ErrorKind.NonSuccessStatus,
        error_detail=f"HTTP {status}: {message}",
    )


_DONE = object()


class Dispatcher:
    """
    Runs one worker pool per request template.

    Parameters:
    - request_manager: shared HTTP client used by every worker.
    - workers: number of concurrent workers per template (must be > 0).
    - collection_auth: collection-level default auth, if any.
    - cli_token: run-level bearer token that overrides every other auth source.
    """

    def __init__(
        self,
        request_manager: RequestManager,
        workers: int,
        collection_auth: Optional[Auth] = None,
        cli_token: Optional[str] = None,
    ) -> None:
        if workers < 1:
            raise ValueError("Number of workers must be greater than 0")
        self.request_manager = request_manager
        self.workers = workers
        self.collection_auth = collection_auth
        self.cli_token = cli_token

    def execute(self, leaf: LeafNode, rows: Sequence[DataRow]) -> Iterator[RequestResult]:
        """Yield one result per row, in completion order."""
        template = leaf.request
        auth = resolve_auth(self.collection_auth, template.auth, self.cli_token)

        work: "queue.Queue[DataRow]" = queue.Queue(maxsize=len(rows))
        for row in rows:
            work.put_nowait(row)
        results: "queue.Queue" = queue.Queue()

        def _worker() -> None:
            while True:
                try:
                    row = work.get_nowait()
                except queue.Empty:
                    return
                results.put(execute_row(template, row, auth, self.request_manager))

        executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="backfill-worker")
        futures = [executor.submit(_worker) for _ in range(self.workers)]

        def _close_when_joined() -> None:
            wait(futures)
            executor.shutdown(wait=True)
            results.put(_DONE)

        threading.Thread(target=_close_when_joined, name="backfill-joiner", daemon=True).start()

        while True:
            item = results.get()
            if item is _DONE:
                break
            yield item

        # Surface anything that escaped a worker (a bug, not a per-row failure)
        for fut in futures:
            fut.result()
