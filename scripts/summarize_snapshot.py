#!/usr/bin/env python3
"""Summarize a JSON invoice snapshot and optionally export flat rows to CSV."""

import csv
import json
import os
import sys
import logging
from pathlib import Path
from typing import Any, Dict, List
from dotenv import load_dotenv

# Add parent directory to path
sys.path.append(str(Path(__file__).parent.parent))

from elderflow.models import parse_datetime
from ledger.core import LedgerAggregator

ROW_FIELDS = ["invoiceId", "clientName", "amount", "paid", "balance", "status", "periodEnd"]


def load_snapshot(path: Path) -> List[Dict[str, Any]]:
    """Read invoices from a snapshot file.

    Accepts either a bare list of invoices or an object with an
    ``invoices`` key, as dumped from /api/invoices.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get("invoices", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} does not contain a list of invoices")
    return data


def write_rows_csv(rows: List[Dict[str, Any]], path: Path) -> None:
    """Write export rows with a fixed header."""
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=ROW_FIELDS)
        writer.writeheader()
        writer.writerows(rows)


def main(argv: List[str]) -> int:
    """Summarize a snapshot file."""
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "WARNING").upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if len(argv) < 2:
        print("Usage: summarize_snapshot.py <snapshot.json> [rows.csv]")
        return 2

    snapshot_path = Path(argv[1])
    if not snapshot_path.exists():
        print(f"✗ Snapshot not found: {snapshot_path}")
        return 1

    invoices = load_snapshot(snapshot_path)
    as_of = parse_datetime(os.getenv("ELDERFLOW_AS_OF"))

    aggregator = LedgerAggregator()
    summary = aggregator.summarize(invoices, as_of=as_of)

    print(json.dumps(summary.to_dict(), indent=2))
    if summary.skipped:
        print(f"\n⚠ Skipped {len(summary.skipped)} malformed invoice(s)")

    if len(argv) > 2:
        rows = aggregator.export_rows(invoices)
        write_rows_csv(rows, Path(argv[2]))
        print(f"✓ Wrote {len(rows)} rows to {argv[2]}")

    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
