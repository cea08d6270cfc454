# ruff: noqa: E402, I001
from __future__ import annotations

import asyncio
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

import pytest

# Make sure the workspace `packages/` dir is on sys.path so `campus_pay` is importable
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from campus_pay.backends import InMemoryBackend
from campus_pay.errors import NetworkError, PersistenceError, TransitionError
from campus_pay.models import LedgerTransaction, LocalTransaction, TransactionStatus
from campus_pay.store import (
    CACHE_KEY_PREFIX,
    TRANSACTIONS_KEY,
    TransactionStore,
    merge_records,
    new_transaction_id,
)

from tests.helpers.ledger_stub import BASE_TIME, Clock, LedgerStub, ledger_tx

ADDRESS = "Wallet1"


def _store(ledger=None, backend=None, clock=None, **kw) -> TransactionStore:
    return TransactionStore(
        ledger or LedgerStub(),
        backend if backend is not None else InMemoryBackend(),
        clock=clock or Clock(),
        **kw,
    )


def _add(store: TransactionStore, minutes: int, **fields) -> LocalTransaction:
    fields.setdefault("amount", Decimal("1"))
    fields.setdefault("from_address", ADDRESS)
    fields.setdefault("to_address", "Vendor1")
    return store.add_transaction(timestamp=BASE_TIME + timedelta(minutes=minutes), **fields)


class _FailingBackend(InMemoryBackend):
    def set(self, key: str, value: str) -> None:
        raise PersistenceError("disk full")


# ---- Local records -----------------------------------------------------------


def test_add_transaction_assigns_id_and_defaults():
    store = _store(clock=Clock(1_700_000_000.5))
    rec = store.add_transaction(amount=Decimal("2.5"), to_address="Vendor1")

    assert rec.id.startswith("tx_1700000000500_")
    assert len(rec.id.rsplit("_", 1)[1]) == 9
    assert rec.status == TransactionStatus.PENDING
    assert rec.category == "other"
    assert rec.timestamp.tzinfo is not None
    assert store.get_transaction(rec.id) == rec


def test_add_transaction_accepts_mapping_and_rejects_explicit_id():
    store = _store()
    rec = store.add_transaction({"amount": "3", "description": "Printing"})
    assert rec.amount == Decimal("3") and rec.description == "Printing"
    with pytest.raises(ValueError):
        store.add_transaction(id="mine", amount=Decimal("1"))


def test_records_are_persisted_newest_first():
    backend = InMemoryBackend()
    store = _store(backend=backend)
    older = _add(store, 0)
    newer = _add(store, 5)

    reopened = _store(backend=backend)
    assert [r.id for r in asyncio.run(reopened.get_all_transactions())] == [newer.id, older.id]
    assert TRANSACTIONS_KEY in backend.data


def test_update_transaction_merges_fields():
    store = _store()
    rec = _add(store, 0)

    updated = store.update_transaction(rec.id, status="confirmed", signature="Sig1")

    assert updated is not None
    assert updated.status == TransactionStatus.CONFIRMED
    assert updated.signature == "Sig1"
    assert updated.amount == rec.amount
    assert store.get_transaction_by_signature("Sig1") == updated


def test_update_transaction_unknown_id_is_noop():
    store = _store()
    _add(store, 0)
    assert store.update_transaction("tx_missing", status="confirmed") is None


def test_update_transaction_rejects_backward_status_and_signature_rewrite():
    store = _store()
    rec = _add(store, 0)
    store.update_transaction(rec.id, status="finalized", signature="Sig1")

    with pytest.raises(TransitionError) as ei:
        store.update_transaction(rec.id, status="pending")
    assert ei.value.code == "invalid_transition"
    with pytest.raises(TransitionError):
        store.update_transaction(rec.id, signature="Sig2")
    # Re-applying the same values is harmless.
    assert store.update_transaction(rec.id, status="finalized", signature="Sig1") is not None


def test_failed_is_reachable_from_non_terminal_only():
    store = _store()
    rec = _add(store, 0)
    store.update_transaction(rec.id, status="confirmed")
    assert store.update_transaction(rec.id, status="failed").status == TransactionStatus.FAILED
    with pytest.raises(TransitionError):
        store.update_transaction(rec.id, status="confirmed")


def test_expire_stale_pending_fails_only_old_pending_records():
    store = _store(now=lambda: BASE_TIME + timedelta(minutes=30))
    old = _add(store, 0)
    fresh = _add(store, 20)
    settled = _add(store, 1, status=TransactionStatus.CONFIRMED, signature="Sig1")

    expired = store.expire_stale_pending(timedelta(minutes=15))

    assert [r.id for r in expired] == [old.id]
    assert store.get_transaction(old.id).status == TransactionStatus.FAILED
    assert store.get_transaction(fresh.id).status == TransactionStatus.PENDING
    assert store.get_transaction(settled.id).status == TransactionStatus.CONFIRMED
    assert store.expire_stale_pending(timedelta(minutes=15)) == []
    with pytest.raises(TransitionError):
        store.update_transaction(old.id, status=TransactionStatus.PENDING)


def test_lookup_helpers_and_delete():
    store = _store()
    a = _add(store, 0, to_address="Vendor1")
    b = _add(store, 1, to_address="Vendor2", status="confirmed")
    c = _add(store, 2, from_address="Friend1", to_address=ADDRESS, type="incoming")

    assert {r.id for r in store.get_transactions_for_address("Vendor2")} == {b.id}
    assert {r.id for r in store.get_transactions_for_address(ADDRESS)} == {a.id, b.id, c.id}
    assert {r.id for r in store.get_pending_transactions()} == {a.id, c.id}

    assert store.delete_transaction(a.id) is True
    assert store.delete_transaction(a.id) is False
    assert store.get_transaction(a.id) is None

    store.clear_all()
    assert asyncio.run(store.get_all_transactions()) == []


def test_corrupt_blob_reads_as_empty_store():
    backend = InMemoryBackend({TRANSACTIONS_KEY: "{not json"})
    store = _store(backend=backend)

    assert asyncio.run(store.get_all_transactions()) == []
    rec = _add(store, 0)
    assert [r.id for r in asyncio.run(store.get_all_transactions())] == [rec.id]


def test_write_failure_is_not_raised():
    store = _store(backend=_FailingBackend())
    rec = _add(store, 0)
    assert rec.id.startswith("tx_")
    assert store.get_transaction(rec.id) is None


# ---- Reconciliation ----------------------------------------------------------


def test_merge_drops_local_duplicates_by_signature():
    ledger = LedgerStub(history=[ledger_tx("S1", minutes=0), ledger_tx("S2", minutes=10),
                                 ledger_tx("S3", minutes=20)])
    store = _store(ledger)
    _add(store, 0, signature="S1", status="confirmed")
    pending = _add(store, 30)

    merged = asyncio.run(store.get_all_transactions(ADDRESS))

    assert len(merged) == 4
    assert [r.id for r in merged] == [pending.id, "S3", "S2", "S1"]
    assert isinstance(merged[-1], LedgerTransaction)
    assert ledger.history_calls == [(ADDRESS, 50)]


def test_merge_records_dedups_by_id_and_keeps_unsigned_locals():
    ledger = [ledger_tx("S1", tx_id="tx_shared", minutes=5)]
    local = [
        LocalTransaction(id="tx_shared", amount=Decimal("1"), timestamp=BASE_TIME),
        LocalTransaction(id="tx_other", amount=Decimal("1"), timestamp=BASE_TIME),
    ]
    merged = merge_records(local, ledger)
    assert [(r.id, r.source) for r in merged] == [("tx_shared", "ledger"), ("tx_other", "local")]


def test_cache_is_reused_within_ttl_and_refetched_after():
    clock = Clock()
    ledger = LedgerStub(history=[ledger_tx("S1")])
    store = _store(ledger, clock=clock)

    asyncio.run(store.get_all_transactions(ADDRESS))
    clock.advance(59)
    asyncio.run(store.get_all_transactions(ADDRESS))
    assert len(ledger.history_calls) == 1

    clock.advance(1)
    asyncio.run(store.get_all_transactions(ADDRESS))
    assert len(ledger.history_calls) == 2


def test_cache_is_shared_through_the_backend():
    backend = InMemoryBackend()
    clock = Clock()
    ledger = LedgerStub(history=[ledger_tx("S1")])
    asyncio.run(_store(ledger, backend, clock).get_all_transactions(ADDRESS))

    other = _store(ledger, backend, clock)
    records = asyncio.run(other.get_all_transactions(ADDRESS))

    assert [r.id for r in records] == ["S1"]
    assert len(ledger.history_calls) == 1
    assert f"{CACHE_KEY_PREFIX}{ADDRESS}" in backend.data


def test_refresh_bypasses_ttl():
    ledger = LedgerStub(history=[ledger_tx("S1")])
    store = _store(ledger)

    asyncio.run(store.get_all_transactions(ADDRESS))
    ledger.history.append(ledger_tx("S2", minutes=1))
    records = asyncio.run(store.refresh(ADDRESS))

    assert len(ledger.history_calls) == 2
    assert [r.id for r in records] == ["S2", "S1"]


def test_ledger_failure_falls_back_to_local_records():
    ledger = LedgerStub(history_error=NetworkError("rpc down"))
    store = _store(ledger)
    rec = _add(store, 0)

    records = asyncio.run(store.get_all_transactions(ADDRESS))

    assert [r.id for r in records] == [rec.id]


def test_corrupt_cache_entry_is_a_miss():
    backend = InMemoryBackend({f"{CACHE_KEY_PREFIX}{ADDRESS}": "garbage"})
    ledger = LedgerStub(history=[ledger_tx("S1")])
    store = _store(ledger, backend)

    records = asyncio.run(store.get_all_transactions(ADDRESS))

    assert [r.id for r in records] == ["S1"]
    assert len(ledger.history_calls) == 1


def test_concurrent_reads_share_one_fetch():
    ledger = LedgerStub(history=[ledger_tx("S1")], history_delay_s=0.01)
    store = _store(ledger)

    async def main():
        return await asyncio.gather(
            store.get_all_transactions(ADDRESS), store.get_all_transactions(ADDRESS)
        )

    first, second = asyncio.run(main())

    assert len(ledger.history_calls) == 1
    assert [r.id for r in first] == [r.id for r in second] == ["S1"]


def test_history_limit_is_passed_to_ledger():
    ledger = LedgerStub(history=[ledger_tx(f"S{i}", minutes=i) for i in range(5)])
    store = _store(ledger, history_limit=2)

    records = asyncio.run(store.get_all_transactions(ADDRESS))

    assert ledger.history_calls == [(ADDRESS, 2)]
    assert len(records) == 2


def test_new_transaction_id_format():
    tx_id = new_transaction_id(lambda: 1.5)
    prefix, millis, suffix = tx_id.split("_")
    assert (prefix, millis) == ("tx", "1500")
    assert len(suffix) == 9 and suffix.isalnum() and suffix == suffix.lower()
