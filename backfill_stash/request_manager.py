"""
request_manager.py

Centralized HTTP execution for BackfillStash.

Design:
- Use a urllib3 PoolManager shared by all workers of a run for connection pooling.
- Never retry: connection, read, status and "other" retries are all zero. Only
  redirects are followed. A failed row is retried by the operator re-running
  the exported failure file.
- Every call runs under a fixed timeout.

`RequestManager.request` returns (status_code, headers_dict, response_text) and
raises TransportError when no response arrived, or ResponseReadError when the
response headers arrived but the body could not be read.
"""
from __future__ import annotations

from typing import Dict, Mapping, Optional, Tuple

import urllib3
from urllib3 import exceptions as u3exc


REQUEST_TIMEOUT_SECONDS = 30.0
MAX_REDIRECTS = 10


class TransportError(Exception):
    """Network-level failure: timeout, refused connection, DNS failure, too many redirects."""


class ResponseReadError(Exception):
    """Headers were received but the response body could not be read."""

    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.status = status


def _describe(err: BaseException) -> str:
    # MaxRetryError wraps the error that actually happened
    if isinstance(err, u3exc.MaxRetryError) and err.reason is not None:
        err = err.reason
    return f"{type(err).__name__}: {err}"


class RequestManager:
    def __init__(
        self,
        pool_maxsize: int = 50,
        num_pools: int = 10,
        timeout_s: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        # Disable urllib3 warnings about insecure requests not relevant here
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        self._timeout = urllib3.Timeout(total=float(timeout_s))
        self._retries = urllib3.Retry(
            connect=0,
            read=0,
            status=0,
            other=0,
            redirect=MAX_REDIRECTS,
        )
        self._pool = urllib3.PoolManager(
            retries=self._retries,
            num_pools=num_pools,
            maxsize=pool_maxsize,
        )

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> Tuple[int, Dict[str, str], str]:
        try:
            resp = self._pool.request(
                method=method.upper(),
                url=url,
                body=body,
                headers=headers or {},
                timeout=self._timeout,
                retries=self._retries,
                preload_content=False,  # so we can tell read failures apart
            )
        except (u3exc.HTTPError, OSError, ValueError) as e:
            # ValueError: http.client refusing a header or body it cannot encode
            raise TransportError(f"Request failed: {_describe(e)}") from e

        try:
            status = int(resp.status)
            # headers: HTTPHeaderDict -> convert to plain dict (last value wins)
            resp_headers = {k: v for k, v in resp.headers.items()}
            try:
                data = resp.read() or b""
            except (u3exc.HTTPError, OSError) as e:
                raise ResponseReadError(f"Error reading response: {_describe(e)}", status) from e
            return status, resp_headers, data.decode("utf-8", errors="replace")
        finally:
            resp.release_conn()

    def close(self) -> None:
        self._pool.clear()
