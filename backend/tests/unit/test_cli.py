"""
Unit Tests for the command line

The service and the session are injected; output is parsed back from JSON.
"""
import json
from contextlib import contextmanager

import pytest

from pickbridge.cli import build_parser, main
from pickbridge.exceptions import NotFoundError
from pickbridge.schemas.fulfillment import SyncBatchResult


class StubService:
    def __init__(self):
        self.calls = []

    def sync_batch(self, db, states, since, until, limit, offset):
        self.calls.append(("sync_batch", states, since, until, limit, offset))
        return SyncBatchResult(imported=3, errors=1, last_ref="S00009")

    def get_remaining(self, reference):
        self.calls.append(("get_remaining", reference))
        return {8: 2.0, 7: 0.0}

    def record_prepared_quantities(self, db, order_id, prepared):
        self.calls.append(("record_prepared_quantities", order_id, prepared))
        return {7: 5.0}

    def get_best_delivery_state(self, db, order_id):
        raise NotFoundError("Sales order", order_id)


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr("pickbridge.cli.setup_logging", lambda: None)


@contextmanager
def _session():
    yield object()


def _run(argv, capsys, service=None):
    service = service or StubService()
    code = main(argv, service_factory=lambda: service, session_factory=_session)
    out, err = capsys.readouterr()
    return code, out, err, service


class TestParser:

    def test_push_backorder_flags(self):
        parser = build_parser()
        assert parser.parse_args(["push", "3"]).create_backorder is None
        assert parser.parse_args(["push", "3", "--backorder"]).create_backorder is True
        assert parser.parse_args(["push", "3", "--no-backorder"]).create_backorder is False

    def test_prepare_parses_line_quantities(self):
        args = build_parser().parse_args(["prepare", "12", "31=5", "32=2.5", "33="])
        assert args.quantities == [(31, 5.0), (32, 2.5), (33, None)]

    def test_prepare_rejects_malformed_pairs(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["prepare", "12", "31"])


class TestMain:

    def test_import_sales(self, capsys):
        code, out, _, service = _run(
            ["import-sales", "--states", "sale,done", "--since", "2025-01-01", "--limit", "20"], capsys
        )
        assert code == 0
        assert json.loads(out) == {"imported": 3, "errors": 1, "last_ref": "S00009"}
        assert service.calls == [("sync_batch", ["sale", "done"], "2025-01-01", None, 20, 0)]

    def test_import_sales_strict_fails_on_errors(self, capsys):
        code, _, err, _ = _run(["import-sales", "--strict"], capsys)
        assert code == 1
        assert json.loads(err)["error"] == "PARTIAL_SYNC_ERROR"

    def test_remaining(self, capsys):
        code, out, _, _ = _run(["remaining", "S00042"], capsys)
        assert code == 0
        assert json.loads(out) == {"remaining": {"7": 0.0, "8": 2.0}}

    def test_prepare(self, capsys):
        code, out, _, service = _run(["prepare", "4", "31=5"], capsys)
        assert code == 0
        assert service.calls == [("record_prepared_quantities", 4, {31: 5.0})]
        assert json.loads(out)["prepared"] == {"7": 5.0}

    def test_error_is_reported_as_json(self, capsys):
        code, out, err, _ = _run(["delivery-state", "99"], capsys)
        assert code == 1
        assert out == ""
        error = json.loads(err)
        assert error["error"] == "NOT_FOUND"
        assert error["retryable"] is False
