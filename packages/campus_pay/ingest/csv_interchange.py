"""CSV export/import of transaction records.

Header (exact order, load-bearing for round trips)::

    ID, Date, Description, Amount (SOL), Category, Status, Type,
    Other Party, Signature, Fees (SOL)

Export quotes every field and writes ``\\n`` line endings. ``Date`` is
ISO-8601 in UTC at second precision; amounts are fixed-notation decimals.

Import locates columns by header name, so reordered exports and exports that
omit optional columns still load. Defaults for missing/empty cells: status
``confirmed``, type ``outgoing``, category ``other``, description ``""``, no
signature, no fees, and a freshly generated id. ``Date`` and ``Amount (SOL)``
are required; a file without them, or with unparsable values, raises
``csv.Error``.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation

from ..models import LedgerTransaction, LocalTransaction, TransactionStatus, TransactionType
from ..store import new_transaction_id

CSV_HEADERS: tuple[str, ...] = (
    "ID",
    "Date",
    "Description",
    "Amount (SOL)",
    "Category",
    "Status",
    "Type",
    "Other Party",
    "Signature",
    "Fees (SOL)",
)

_REQUIRED_HEADERS: frozenset[str] = frozenset({"Date", "Amount (SOL)"})


def _fmt_decimal(value: Decimal | None) -> str:
    if value is None:
        return ""
    # Fixed notation; str(Decimal) may use exponents for tiny amounts.
    return format(value, "f")


def _fmt_timestamp(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="seconds")


def export_transactions_to_csv(
    records: Iterable[LocalTransaction | LedgerTransaction],
) -> str:
    """Render ``records`` as CSV text with the fixed header."""

    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for r in records:
        writer.writerow(
            [
                r.id,
                _fmt_timestamp(r.timestamp),
                r.description,
                _fmt_decimal(r.amount),
                r.category,
                r.status.value,
                r.type.value,
                r.other_party,
                r.signature or "",
                _fmt_decimal(r.fees),
            ]
        )
    return buf.getvalue()


def _cell(row: Mapping[str, str | None], name: str) -> str | None:
    value = row.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parse_decimal(raw: str, *, column: str, line: int) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation as e:
        raise csv.Error(f"line {line}: invalid {column}: {raw!r}") from e
    if not value.is_finite():
        raise csv.Error(f"line {line}: invalid {column}: {raw!r}")
    return value


def _parse_timestamp(raw: str, *, line: int) -> datetime:
    try:
        ts = datetime.fromisoformat(raw)
    except ValueError as e:
        raise csv.Error(f"line {line}: invalid Date: {raw!r}") from e
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def import_transactions_from_csv(
    text: str, *, owner_address: str = ""
) -> list[LocalTransaction]:
    """Parse CSV produced by :func:`export_transactions_to_csv`.

    ``owner_address`` fills the wallet's own side of each transfer: the
    sender for outgoing rows and the recipient for incoming rows. The
    ``Other Party`` column fills the opposite side.
    """

    reader = csv.DictReader(io.StringIO(text))
    headers = set(reader.fieldnames or [])
    if not headers:
        raise csv.Error("CSV appears to have no header row")
    missing = sorted(_REQUIRED_HEADERS - headers)
    if missing:
        raise csv.Error("CSV header mismatch. Missing columns: " + ", ".join(missing))

    out: list[LocalTransaction] = []
    for row in reader:
        line = reader.line_num
        if not any((v or "").strip() for v in row.values() if isinstance(v, str)):
            continue

        raw_date = _cell(row, "Date")
        raw_amount = _cell(row, "Amount (SOL)")
        if raw_date is None or raw_amount is None:
            raise csv.Error(f"line {line}: Date and Amount (SOL) are required")

        raw_status = _cell(row, "Status") or TransactionStatus.CONFIRMED.value
        raw_type = _cell(row, "Type") or TransactionType.OUTGOING.value
        try:
            status = TransactionStatus(raw_status.lower())
            tx_type = TransactionType(raw_type.lower())
        except ValueError as e:
            raise csv.Error(f"line {line}: {e}") from e

        other_party = _cell(row, "Other Party") or ""
        if tx_type == TransactionType.OUTGOING:
            from_address, to_address = owner_address, other_party
        else:
            from_address, to_address = other_party, owner_address

        raw_fees = _cell(row, "Fees (SOL)")
        out.append(
            LocalTransaction(
                id=_cell(row, "ID") or new_transaction_id(),
                timestamp=_parse_timestamp(raw_date, line=line),
                description=row.get("Description") or "",
                amount=_parse_decimal(raw_amount, column="Amount (SOL)", line=line),
                category=_cell(row, "Category") or "other",
                status=status,
                type=tx_type,
                from_address=from_address,
                to_address=to_address,
                signature=_cell(row, "Signature"),
                fees=(
                    _parse_decimal(raw_fees, column="Fees (SOL)", line=line)
                    if raw_fees is not None
                    else None
                ),
            )
        )
    return out


__all__ = ["CSV_HEADERS", "export_transactions_to_csv", "import_transactions_from_csv"]
