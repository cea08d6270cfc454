# ruff: noqa: E402, I001
from __future__ import annotations

import csv
import io
import sys
from pathlib import Path

import pytest

# Make sure the workspace `packages/` dir is on sys.path so `campus_pay` is importable
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from typer.testing import CliRunner

from campus_pay.cli import app
from campus_pay.codec import is_valid_address

runner = CliRunner()

SAMPLE_CSV = (
    '"ID","Date","Description","Amount (SOL)","Category","Status","Type","Other Party",'
    '"Signature","Fees (SOL)"\n'
    '"tx_a","2025-03-01T12:00:00+00:00","Lunch","0.5","food","confirmed","outgoing",'
    '"Cafe1","SigA","0.000005"\n'
    '"tx_b","2025-03-02T12:00:00+00:00","Refund","3","other","pending","incoming",'
    '"Friend1","",""\n'
)


def _stdout_lines(result) -> list[str]:
    return [line for line in result.stdout.splitlines() if line]


def test_build_uri_prints_uri():
    result = runner.invoke(
        app,
        ["build-uri", "--recipient", "Addr1", "--amount", "0.5", "--label", "Lunch",
         "--no-reference"],
    )
    assert result.exit_code == 0, result.output
    assert _stdout_lines(result) == ["pay:Addr1?amount=0.5&label=Lunch"]


def test_build_uri_attaches_reference_by_default(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("CAMPUS_PAY_URI_SCHEME", "solana")
    result = runner.invoke(app, ["build-uri", "--recipient", "Addr1", "--amount", "2"])
    assert result.exit_code == 0, result.output
    [uri] = _stdout_lines(result)
    assert uri.startswith("solana:Addr1?amount=2&reference=")
    assert is_valid_address(uri.rsplit("=", 1)[1])


@pytest.mark.parametrize(
    ("amount", "code"),
    [("0", "invalid_amount"), ("abc", "invalid_amount"), ("99999999999", "amount_exceeds_limit")],
)
def test_build_uri_reports_validation_code(amount, code):
    result = runner.invoke(app, ["build-uri", "--recipient", "Addr1", "--amount", amount])
    assert result.exit_code == 1
    assert f"Error: {code}" in result.output


def test_parse_uri_prints_fields():
    result = runner.invoke(app, ["parse-uri", "pay:Addr1?amount=0.5&label=Lunch%20break"])
    assert result.exit_code == 0, result.output
    assert _stdout_lines(result) == ["recipient\tAddr1", "amount\t0.5", "label\tLunch break"]


@pytest.mark.parametrize(
    "uri",
    ["bitcoin:Addr1?amount=1", "pay:Addr1?amount=1&amount=2", "pay:Addr1"],
)
def test_parse_uri_failures_exit_nonzero(uri):
    result = runner.invoke(app, ["parse-uri", uri])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_new_reference():
    result = runner.invoke(app, ["new-reference"])
    assert result.exit_code == 0
    [ref] = _stdout_lines(result)
    assert is_valid_address(ref)


def test_invalid_configuration_is_reported(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("CAMPUS_PAY_AMOUNT_CEILING", "lots")
    result = runner.invoke(app, ["new-reference"])
    assert result.exit_code == 0
    result = runner.invoke(app, ["build-uri", "--recipient", "Addr1", "--amount", "1"])
    assert result.exit_code == 1
    assert "CAMPUS_PAY_AMOUNT_CEILING" in result.output


def _import_list_export(tmp_path: Path) -> tuple[list[str], list[dict[str, str]]]:
    src = tmp_path / "in.csv"
    src.write_text(SAMPLE_CSV, encoding="utf-8")
    out = tmp_path / "out.csv"

    imported = runner.invoke(app, ["import-csv", "--csv-path", str(src), "--owner-address",
                                   "Wallet1"])
    assert imported.exit_code == 0, imported.output

    listed = runner.invoke(app, ["list-transactions"])
    assert listed.exit_code == 0, listed.output

    exported = runner.invoke(app, ["export-csv", "--out", str(out)])
    assert exported.exit_code == 0, exported.output

    rows = list(csv.DictReader(io.StringIO(out.read_text(encoding="utf-8"))))
    return _stdout_lines(listed), rows


def test_import_list_export_with_file_storage(tmp_path: Path):
    lines, rows = _import_list_export(tmp_path)

    assert [line.split("\t")[2:6] for line in lines] == [
        ["3", "pending", "incoming", "Friend1"],
        ["0.5", "confirmed", "outgoing", "Cafe1"],
    ]
    assert [(r["Description"], r["Signature"], r["Fees (SOL)"]) for r in rows] == [
        ("Refund", "", ""),
        ("Lunch", "SigA", "0.000005"),
    ]
    assert any((tmp_path / "data").iterdir())


def test_import_list_export_with_sql_storage(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'cli.db'}")

    lines, rows = _import_list_export(tmp_path)

    assert len(lines) == 2 and len(rows) == 2
    assert (tmp_path / "cli.db").exists()
    assert not any((tmp_path / "data").iterdir())


def test_list_transactions_filters_by_status(tmp_path: Path):
    src = tmp_path / "in.csv"
    src.write_text(SAMPLE_CSV, encoding="utf-8")
    runner.invoke(app, ["import-csv", "--csv-path", str(src)])

    result = runner.invoke(app, ["list-transactions", "--status", "pending"])
    assert result.exit_code == 0
    assert [line.split("\t")[6] for line in _stdout_lines(result)] == ["Refund"]

    bad = runner.invoke(app, ["list-transactions", "--status", "lost"])
    assert bad.exit_code == 1


def test_import_csv_reports_missing_file_and_bad_csv(tmp_path: Path):
    missing = runner.invoke(app, ["import-csv", "--csv-path", str(tmp_path / "nope.csv")])
    assert missing.exit_code == 1
    assert "File not found" in missing.output

    bad = tmp_path / "bad.csv"
    bad.write_text("Name,Total\nx,1\n", encoding="utf-8")
    result = runner.invoke(app, ["import-csv", "--csv-path", str(bad)])
    assert result.exit_code == 1
    assert "Failed to parse CSV" in result.output
