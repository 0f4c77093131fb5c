"""Pytest fixtures for BackfillStash tests."""

import csv
import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from backfill_stash.request_manager import RequestManager


def write_csv(path: Path, records) -> Path:
    with path.open("w", encoding="utf-8", newline="") as f:
        csv.writer(f).writerows(records)
    return path


def write_collection(path: Path, data: dict) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def make_manager(responder) -> MagicMock:
    """A RequestManager stand-in whose `request` calls `responder(method, url, headers, body)`."""
    manager = MagicMock(spec=RequestManager)
    manager.request.side_effect = responder
    return manager


def ok_responder(method, url, headers, body):
    return 200, {"Content-Type": "application/json"}, '{"ok":true}'


@pytest.fixture
def ok_manager() -> MagicMock:
    return make_manager(ok_responder)


@pytest.fixture
def users_collection() -> dict:
    return {
        "info": {"name": "Users API"},
        "item": [
            {
                "name": "Get User",
                "request": {"method": "GET", "url": "https://api.test/users/{{userId}}"},
            }
        ],
    }
