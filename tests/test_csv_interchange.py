# ruff: noqa: E402, I001
from __future__ import annotations

import csv
import sys
from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

# Make sure the workspace `packages/` dir is on sys.path so `campus_pay` is importable
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from campus_pay.ingest import (
    CSV_HEADERS,
    export_transactions_to_csv,
    import_transactions_from_csv,
)
from campus_pay.models import LocalTransaction, TransactionStatus, TransactionType

from tests.helpers.ledger_stub import ledger_tx

OWNER = "Wallet1"


def _records() -> list:
    return [
        LocalTransaction(
            id="tx_1",
            amount=Decimal("4.25"),
            from_address=OWNER,
            to_address="Cafe1",
            timestamp=datetime(2025, 3, 2, 8, 30, 15, 999, tzinfo=UTC),
            status=TransactionStatus.PENDING,
            category="food",
            description='Latte, "large"',
        ),
        ledger_tx("Sig2", minutes=5, amount="0.000000001", from_address="Friend1",
                  to_address=OWNER, tx_type=TransactionType.INCOMING),
        LocalTransaction(
            id="tx_3",
            signature="Sig3",
            amount=Decimal("0.75"),
            from_address=OWNER,
            to_address="Shuttle1",
            timestamp=datetime(2025, 3, 2, 17, 5, 0, tzinfo=UTC),
            status=TransactionStatus.FINALIZED,
            category="transport",
            description="North Gate Shuttle",
            fees=Decimal("0.000005"),
        ),
    ]


def test_export_header_and_quoting():
    text = export_transactions_to_csv(_records())
    lines = text.split("\n")

    assert lines[0] == ",".join(f'"{h}"' for h in CSV_HEADERS)
    assert lines[1] == (
        '"tx_1","2025-03-02T08:30:15+00:00","Latte, ""large""","4.25","food",'
        '"pending","outgoing","Cafe1","",""'
    )
    assert '"0.000000001"' in lines[2]
    assert '"incoming","Friend1","Sig2"' in lines[2]
    assert text.endswith("\n")


def test_export_converts_timestamps_to_utc():
    rec = LocalTransaction(
        id="tx_tz",
        amount=Decimal("1"),
        timestamp=datetime(2025, 1, 1, 9, 0, tzinfo=timezone(timedelta(hours=2))),
    )
    text = export_transactions_to_csv([rec])
    assert '"2025-01-01T07:00:00+00:00"' in text


def test_import_reads_export_back():
    imported = import_transactions_from_csv(
        export_transactions_to_csv(_records()), owner_address=OWNER
    )

    assert all(isinstance(r, LocalTransaction) for r in imported)
    assert len(imported) == len(_records())
    for original, restored in zip(_records(), imported, strict=True):
        expected = original.model_dump(exclude={"source"})
        expected["timestamp"] = original.timestamp.replace(microsecond=0)
        assert restored.model_dump(exclude={"source"}) == expected
    assert imported[2].fees == Decimal("0.000005")
    assert imported[2].category == "transport"


def test_import_applies_defaults_for_missing_columns():
    text = 'Date,Amount (SOL)\n2025-03-01T12:00:00,2.5\n,\n'
    [rec] = import_transactions_from_csv(text)

    assert rec.id.startswith("tx_")
    assert rec.status == TransactionStatus.CONFIRMED
    assert rec.type == TransactionType.OUTGOING
    assert rec.category == "other"
    assert rec.description == ""
    assert rec.signature is None and rec.fees is None
    assert rec.timestamp.tzinfo is not None


def test_import_accepts_reordered_columns():
    text = (
        '"Amount (SOL)","Fees (SOL)","Date","Status"\n'
        '"1.5","0.000005","2025-03-01T12:00:00+00:00","FAILED"\n'
    )
    [rec] = import_transactions_from_csv(text)
    assert rec.amount == Decimal("1.5")
    assert rec.fees == Decimal("0.000005")
    assert rec.status == TransactionStatus.FAILED


@pytest.mark.parametrize(
    "text",
    [
        "",
        "ID,Description\nx,y\n",
        "Date,Amount (SOL)\nnot-a-date,1\n",
        "Date,Amount (SOL)\n2025-03-01T12:00:00,lots\n",
        "Date,Amount (SOL)\n2025-03-01T12:00:00,\n",
        "Date,Amount (SOL),Status\n2025-03-01T12:00:00,1,lost\n",
    ],
)
def test_import_rejects_bad_input(text):
    with pytest.raises(csv.Error):
        import_transactions_from_csv(text)
