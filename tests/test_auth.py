"""Tests for auth resolution and application."""

import base64

from urllib3 import HTTPHeaderDict

from backfill_stash.auth import ApiKeyAuth, BasicAuth, BearerAuth, NoAuth, apply_auth, resolve_auth


class TestResolveAuth:
    """Tests for the CLI > request > collection priority."""

    def test_cli_token_wins_over_everything(self):
        auth = resolve_auth(
            BasicAuth(username="u", password="p"),
            ApiKeyAuth(header_name="X-Key", value="k"),
            "T",
        )
        assert auth == BearerAuth(token="T")

        headers = HTTPHeaderDict()
        apply_auth(headers, auth, {})
        assert headers["Authorization"] == "Bearer T"
        assert "X-Key" not in headers

    def test_request_auth_beats_collection_auth(self):
        request_auth = ApiKeyAuth(header_name="X-Key", value="k")
        assert resolve_auth(BasicAuth(username="u"), request_auth, None) is request_auth

    def test_collection_auth_is_the_fallback(self):
        collection_auth = BearerAuth(token="c")
        assert resolve_auth(collection_auth, None, "") is collection_auth

    def test_no_sources_means_no_auth(self):
        assert resolve_auth(None, None, None) is None

    def test_request_noauth_suppresses_collection_default(self):
        assert resolve_auth(BearerAuth(token="c"), NoAuth(), None) is None


class TestApplyAuth:
    """Tests for rendering auth into headers."""

    def test_bearer_token_is_substituted(self):
        headers = HTTPHeaderDict()
        apply_auth(headers, BearerAuth(token="{{token}}"), {"token": "abc123"})
        assert headers["Authorization"] == "Bearer abc123"

    def test_api_key_header_name_and_value_are_substituted(self):
        headers = HTTPHeaderDict()
        apply_auth(headers, ApiKeyAuth(header_name="X-{{tenant}}-Key", value="{{key}}"), {"tenant": "acme", "key": "s3"})
        assert headers["X-acme-Key"] == "s3"

    def test_basic_auth_credentials(self):
        headers = HTTPHeaderDict()
        apply_auth(headers, BasicAuth(username="{{user}}", password="secret"), {"user": "alice"})
        expected = base64.b64encode(b"alice:secret").decode()
        assert headers["Authorization"] == f"Basic {expected}"

    def test_none_leaves_headers_untouched(self):
        headers = HTTPHeaderDict()
        apply_auth(headers, None, {})
        assert len(headers) == 0
