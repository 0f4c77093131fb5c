"""
auth.py

Authentication variants and their resolution for one request.

Three sources can supply auth, highest priority first:
  1. a run-level bearer token (CLI override)
  2. the auth declared on the request itself
  3. the collection-level default

The winning variant is rendered into request headers with its fields
substituted from the current data row.
"""
from __future__ import annotations

from typing import MutableMapping, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict
from urllib3.util import make_headers

from .template_utility import substitute


class BearerAuth(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str


class ApiKeyAuth(BaseModel):
    model_config = ConfigDict(frozen=True)

    header_name: str
    value: str


class BasicAuth(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    password: str = ""


class NoAuth(BaseModel):
    """Explicit "no auth"; on a request it stops the collection default from applying."""

    model_config = ConfigDict(frozen=True)


Auth = Union[BearerAuth, ApiKeyAuth, BasicAuth, NoAuth]


def resolve_auth(
    collection_auth: Optional[Auth],
    request_auth: Optional[Auth],
    cli_token: Optional[str] = None,
) -> Optional[Auth]:
    """Pick the auth to apply, or None when the request goes out unauthenticated."""
    if cli_token:
        return BearerAuth(token=cli_token)
    chosen = request_auth if request_auth is not None else collection_auth
    if chosen is None or isinstance(chosen, NoAuth):
        return None
    return chosen


def apply_auth(headers: MutableMapping[str, str], auth: Optional[Auth], row: Mapping[str, str]) -> None:
    """
    Write the auth headers for `auth` into `headers`.

    Must run before the request's explicit headers are set so that an explicit
    header with the same name replaces the auth-derived one.
    """
    if auth is None:
        return
    if isinstance(auth, BearerAuth):
        if auth.token:
            headers["Authorization"] = "Bearer " + substitute(auth.token, row)
    elif isinstance(auth, ApiKeyAuth):
        name = substitute(auth.header_name, row).strip()
        if name and auth.value:
            headers[name] = substitute(auth.value, row)
    elif isinstance(auth, BasicAuth):
        if auth.username:
            username = substitute(auth.username, row)
            password = substitute(auth.password, row)
            basic = make_headers(basic_auth=f"{username}:{password}")
            headers["Authorization"] = basic["authorization"]
