"""
Tests for the snapshot summary script.
"""

import csv
import importlib.util
import json
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "summarize_snapshot.py"


@pytest.fixture(scope="module")
def script():
    spec = importlib.util.spec_from_file_location("summarize_snapshot", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestSnapshotHelpers:
    """Tests for loading snapshots and writing rows."""

    def test_load_bare_list(self, script, tmp_path, make_invoice):
        path = tmp_path / "invoices.json"
        path.write_text(json.dumps([make_invoice()]))

        assert len(script.load_snapshot(path)) == 1

    def test_load_wrapped(self, script, tmp_path, make_invoice):
        path = tmp_path / "invoices.json"
        path.write_text(json.dumps({"invoices": [make_invoice(), make_invoice()]}))

        assert len(script.load_snapshot(path)) == 2

    def test_load_rejects_other_shapes(self, script, tmp_path):
        path = tmp_path / "invoices.json"
        path.write_text(json.dumps("nope"))

        with pytest.raises(ValueError):
            script.load_snapshot(path)

    def test_write_rows_csv(self, script, tmp_path):
        path = tmp_path / "rows.csv"
        rows = [{"invoiceId": "inv-1", "clientName": "Ada", "amount": 10.0, "paid": 0.0,
                 "balance": 10.0, "status": "sent", "periodEnd": "2024-05-31"}]

        script.write_rows_csv(rows, path)

        with open(path, newline="") as f:
            written = list(csv.DictReader(f))
        assert written[0]["invoiceId"] == "inv-1"
        assert written[0]["balance"] == "10.0"


class TestMain:
    """Tests for the command line entry point."""

    def test_usage(self, script, capsys):
        assert script.main(["summarize_snapshot.py"]) == 2
        assert "Usage" in capsys.readouterr().out

    def test_missing_file(self, script, tmp_path):
        assert script.main(["summarize_snapshot.py", str(tmp_path / "missing.json")]) == 1

    def test_summary_and_export(self, script, tmp_path, make_invoice, capsys, monkeypatch):
        monkeypatch.setenv("ELDERFLOW_AS_OF", "2024-06-30T12:00:00+00:00")
        snapshot = tmp_path / "invoices.json"
        snapshot.write_text(json.dumps([
            make_invoice(total=100, status="paid"),
            make_invoice(total=200, status="sent")
        ]))
        rows_path = tmp_path / "rows.csv"

        assert script.main(["summarize_snapshot.py", str(snapshot), str(rows_path)]) == 0

        out = capsys.readouterr().out
        assert '"collectionRate": 33' in out
        assert "Wrote 2 rows" in out
        assert rows_path.exists()
