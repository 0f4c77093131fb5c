"""End-to-end tests for BatchRunner and run_batch."""

import csv
import json
import threading

import pytest

from backfill_stash.config_schema import RunSettings
from backfill_stash.data_source import DataSourceError
from backfill_stash.failure_exporter import ERROR_COLUMNS
from backfill_stash.runner import run_batch

from conftest import make_manager, write_collection, write_csv


def _settings(tmp_path, collection, records, **kw):
    return RunSettings(
        collection_path=write_collection(tmp_path / "collection.json", collection),
        data_path=write_csv(tmp_path / "data.csv", records),
        output_dir=tmp_path / "out",
        quiet=True,
        **kw,
    )


class TestRunBatch:
    """Tests for run_batch."""

    def test_failures_exported_and_metrics_written(self, tmp_path, users_collection):
        def responder(method, url, headers, body):
            if url.endswith("/2"):
                return 404, {}, "not found"
            return 200, {}, "ok"

        settings = _settings(tmp_path, users_collection, [["userId", "note"], ["1", "a"], ["2", "b"], ["3", "c"]])
        run, metrics_path = run_batch(settings, request_manager=make_manager(responder))

        summary = run.summary()
        assert summary["total_requests"] == 3
        assert summary["successful"] == 2
        assert summary["failed"] == 1

        doc = json.loads(metrics_path.read_text(encoding="utf-8"))
        assert doc["collection_name"] == "Users API"
        assert doc["summary"]["failed"] == 1

        failure_files = list((tmp_path / "out").glob("failed_requests_Get_User_*.csv"))
        assert len(failure_files) == 1
        with failure_files[0].open(newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert len(rows) == 1
        assert rows[0]["userId"] == "2"
        assert rows[0]["note"] == "b"
        assert rows[0]["_error_status_code"] == "404"
        assert set(ERROR_COLUMNS) <= set(rows[0])
        assert run.items[0].failure_file == str(failure_files[0])

    def test_no_failure_file_when_all_succeed(self, tmp_path, users_collection, ok_manager):
        settings = _settings(tmp_path, users_collection, [["userId"], ["1"], ["2"]])
        run, _ = run_batch(settings, request_manager=ok_manager)
        assert run.items[0].failure_file is None
        assert list((tmp_path / "out").glob("failed_requests_*.csv")) == []
        assert len(list((tmp_path / "out").glob("backfill-run-*.log"))) == 1

    def test_explicit_yaml_metrics_file(self, tmp_path, users_collection, ok_manager):
        target = tmp_path / "metrics.yml"
        settings = _settings(tmp_path, users_collection, [["userId"], ["1"]], metrics_file=target)
        _, metrics_path = run_batch(settings, request_manager=ok_manager)
        assert metrics_path == target
        assert "collection_name: Users API" in target.read_text(encoding="utf-8")

    def test_items_run_one_after_another(self, tmp_path):
        collection = {
            "info": {"name": "Two"},
            "item": [
                {"name": "A", "request": {"method": "GET", "url": "https://api.test/a/{{id}}"}},
                {
                    "name": "Folder",
                    "item": [{"name": "B", "request": {"method": "POST", "url": "https://api.test/b/{{id}}"}}],
                },
            ],
        }
        seen = []
        lock = threading.Lock()

        def responder(method, url, headers, body):
            with lock:
                seen.append(url.split("/")[3])
            return 200, {}, "ok"

        records = [["id"]] + [[str(i)] for i in range(20)]
        settings = _settings(tmp_path, collection, records, workers=5)
        run, _ = run_batch(settings, request_manager=make_manager(responder))

        assert seen == ["a"] * 20 + ["b"] * 20
        assert [item.name for item in run.items] == ["A", "B"]

    def test_header_only_csv_sends_nothing(self, tmp_path, users_collection):
        manager = make_manager(lambda *a: (200, {}, "ok"))
        settings = _settings(tmp_path, users_collection, [["userId"]])
        with pytest.raises(DataSourceError):
            run_batch(settings, request_manager=manager)
        manager.request.assert_not_called()

    def test_cli_token_reaches_every_request(self, tmp_path, users_collection):
        tokens = []

        def responder(method, url, headers, body):
            tokens.append(headers["Authorization"])
            return 200, {}, "ok"

        users_collection["auth"] = {"type": "bearer", "bearer": [{"key": "token", "value": "collection"}]}
        settings = _settings(tmp_path, users_collection, [["userId"], ["1"], ["2"]], bearer_token="cli")
        run_batch(settings, request_manager=make_manager(responder))
        assert tokens == ["Bearer cli", "Bearer cli"]
