"""
url_builder.py

Compose the final request URL from a templated base URL and the structured
query parameters of a collection request.
"""
from __future__ import annotations

from typing import Dict, List, Mapping, Sequence
from urllib import parse as urlparse

from urllib3.exceptions import LocationParseError
from urllib3.util import parse_url

from .template_utility import substitute


class InvalidURLError(ValueError):
    """The URL could not be parsed once placeholders were substituted."""


def _parse(url: str) -> urlparse.SplitResult:
    try:
        parsed = parse_url(url)
    except LocationParseError as e:
        raise InvalidURLError(f"invalid URL {url!r}: {e}") from e
    if parsed.scheme not in ("http", "https"):
        raise InvalidURLError(f"invalid URL {url!r}: unsupported scheme {parsed.scheme!r}")
    if not parsed.host:
        raise InvalidURLError(f"invalid URL {url!r}: missing host")
    try:
        return urlparse.urlsplit(url)
    except ValueError as e:
        raise InvalidURLError(f"invalid URL {url!r}: {e}") from e


def build_url(url_template: str, query_params: Sequence, row: Mapping[str, str]) -> str:
    """
    Build the URL for one data row.

    `query_params` is a sequence of objects with `key` and `value` attributes.
    Parameters already present in the templated URL are kept; each declared
    parameter with a non-empty key then replaces every existing value under
    that key (the last declaration of a repeated key wins). Keys and values
    are percent-encoded on output.

    Raises InvalidURLError when the substituted URL is not an http(s) URL.
    """
    base = substitute(url_template or "", row).strip()
    parts = _parse(base)
    if not query_params:
        return base

    merged: Dict[str, List[str]] = {}
    for k, v in urlparse.parse_qsl(parts.query, keep_blank_values=True):
        merged.setdefault(k, []).append(v)
    for param in query_params:
        if not param.key:
            continue
        merged[param.key] = [substitute(param.value or "", row)]

    query = urlparse.urlencode(merged, doseq=True)
    return urlparse.urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))
