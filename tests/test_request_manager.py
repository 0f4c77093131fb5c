"""Tests for the urllib3-backed request manager."""

from unittest.mock import MagicMock, patch

import pytest
from urllib3 import exceptions as u3exc

from backfill_stash.request_manager import REQUEST_TIMEOUT_SECONDS, RequestManager, ResponseReadError, TransportError


def _response(status=200, body=b"ok", read_error=None):
    resp = MagicMock()
    resp.status = status
    resp.headers = {"Content-Type": "text/plain"}
    if read_error is not None:
        resp.read.side_effect = read_error
    else:
        resp.read.return_value = body
    return resp


class TestRequestManager:
    """Tests for RequestManager.request."""

    def test_returns_status_headers_and_text(self):
        manager = RequestManager()
        resp = _response(201, "héllo".encode("utf-8"))
        with patch.object(manager._pool, "request", return_value=resp) as req:
            status, headers, text = manager.request("post", "https://api.test/x", {"A": "1"}, b"{}")
        assert (status, headers, text) == (201, {"Content-Type": "text/plain"}, "héllo")
        kwargs = req.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["timeout"].total == REQUEST_TIMEOUT_SECONDS
        resp.release_conn.assert_called_once()

    def test_connection_failure_is_a_transport_error(self):
        manager = RequestManager()
        err = u3exc.MaxRetryError(None, "https://api.test/x", reason=u3exc.ConnectTimeoutError("timed out"))
        with patch.object(manager._pool, "request", side_effect=err):
            with pytest.raises(TransportError) as exc:
                manager.request("GET", "https://api.test/x")
        assert "ConnectTimeoutError" in str(exc.value)

    def test_os_error_is_a_transport_error(self):
        manager = RequestManager()
        with patch.object(manager._pool, "request", side_effect=ConnectionRefusedError("refused")):
            with pytest.raises(TransportError):
                manager.request("GET", "https://api.test/x")

    def test_unencodable_request_is_a_transport_error(self):
        manager = RequestManager()
        err = UnicodeEncodeError("latin-1", "李", 0, 1, "ordinal not in range(256)")
        with patch.object(manager._pool, "request", side_effect=err):
            with pytest.raises(TransportError):
                manager.request("GET", "https://api.test/x", {"X-Name": "李"})

    def test_body_read_failure_keeps_status(self):
        manager = RequestManager()
        resp = _response(200, read_error=u3exc.ProtocolError("Connection broken"))
        with patch.object(manager._pool, "request", return_value=resp):
            with pytest.raises(ResponseReadError) as exc:
                manager.request("GET", "https://api.test/x")
        assert exc.value.status == 200
        resp.release_conn.assert_called_once()

    def test_no_automatic_retries(self):
        manager = RequestManager()
        retries = manager._retries
        assert (retries.connect, retries.read, retries.status, retries.other) == (0, 0, 0, 0)
