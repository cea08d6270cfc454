"""Filtered, sorted and aggregated views over transaction records.

These are deterministic reductions over whatever the store returns; nothing
here is estimated or simulated.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from enum import StrEnum

from .models import LedgerTransaction, LocalTransaction, TransactionStatus, TransactionType

Record = LocalTransaction | LedgerTransaction


class HistoryFilter(StrEnum):
    ALL = "all"
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    PENDING = "pending"


class HistorySort(StrEnum):
    DATE = "date"
    AMOUNT = "amount"


def filter_records(records: Iterable[Record], which: HistoryFilter | str) -> list[Record]:
    which = HistoryFilter(which)
    if which == HistoryFilter.INCOMING:
        return [r for r in records if r.type == TransactionType.INCOMING]
    if which == HistoryFilter.OUTGOING:
        return [r for r in records if r.type == TransactionType.OUTGOING]
    if which == HistoryFilter.PENDING:
        return [r for r in records if r.status == TransactionStatus.PENDING]
    return list(records)


def sort_records(records: Iterable[Record], by: HistorySort | str = HistorySort.DATE) -> list[Record]:
    """Sort descending by timestamp or by amount (ties broken by timestamp)."""

    if HistorySort(by) == HistorySort.AMOUNT:
        return sorted(records, key=lambda r: (r.amount, r.timestamp), reverse=True)
    return sorted(records, key=lambda r: r.timestamp, reverse=True)


def _settled(records: Iterable[Record], tx_type: TransactionType) -> list[Record]:
    # Failed transfers moved no funds.
    return [r for r in records if r.type == tx_type and r.status != TransactionStatus.FAILED]


def total_spent(records: Iterable[Record]) -> Decimal:
    return sum((r.amount for r in _settled(records, TransactionType.OUTGOING)), Decimal(0))


def total_received(records: Iterable[Record]) -> Decimal:
    return sum((r.amount for r in _settled(records, TransactionType.INCOMING)), Decimal(0))


def spending_by_category(records: Iterable[Record]) -> dict[str, Decimal]:
    """Sum outgoing amounts per category, largest first."""

    totals: dict[str, Decimal] = {}
    for r in _settled(records, TransactionType.OUTGOING):
        key = r.category or "other"
        totals[key] = totals.get(key, Decimal(0)) + r.amount
    return dict(sorted(totals.items(), key=lambda kv: kv[1], reverse=True))


__all__ = [
    "HistoryFilter",
    "HistorySort",
    "filter_records",
    "sort_records",
    "total_spent",
    "total_received",
    "spending_by_category",
]
