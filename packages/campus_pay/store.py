"""Transaction store: local intents reconciled with ledger history.

``TransactionStore`` is the single source of truth for one user's
transactions. It is an ordinary object constructed once by the host and
passed to whatever needs it; there is no module-level instance.

Storage layout (keys in the injected :class:`~campus_pay.backends.PersistenceBackend`):

- ``campus_pay:transactions``: JSON list of local records, newest first.
  Decimals are strings, timestamps ISO-8601.
- ``campus_pay:ledger_cache:<address>``: a :class:`~campus_pay.models.LedgerCacheEntry`
  holding the last ledger fetch for that address and its fetch time.

Reconciliation treats the ledger list as authoritative. A local record is
dropped as a duplicate when its signature matches a ledger signature (both
present) or its id matches a ledger id; every other local record (not yet
visible on-ledger, or off-ledger) is kept. The merged list is sorted newest
first.

Failures never escape to callers of the read paths: a corrupt or unreadable
blob is an empty store or a cache miss, and a ledger failure falls back to
local data. Each case is logged.
"""

from __future__ import annotations

import asyncio
import secrets
import string
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError

from .backends import PersistenceBackend
from .config import DEFAULT_CACHE_TTL_S, DEFAULT_HISTORY_LIMIT
from .errors import PersistenceError, TransitionError
from .ledger import LedgerClient
from .logging_setup import get_logger
from .models import (
    RECORD_LIST_ADAPTER,
    LedgerCacheEntry,
    LedgerTransaction,
    LocalTransaction,
    TransactionStatus,
    is_allowed_transition,
)

TRANSACTIONS_KEY = "campus_pay:transactions"
CACHE_KEY_PREFIX = "campus_pay:ledger_cache:"

# Bump only when the on-disk cache entry shape changes.
CACHE_SCHEMA_VERSION: int = 1


_ID_ALPHABET = string.digits + string.ascii_lowercase

Record = LocalTransaction | LedgerTransaction

_logger = get_logger("campus_pay.store")


def new_transaction_id(clock: Callable[[], float] = time.time) -> str:
    """Return ``tx_<epoch ms>_<9 base36 chars>``; unique enough for local ids."""

    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"tx_{int(clock() * 1000)}_{suffix}"


def sort_newest_first(records: Iterable[Record]) -> list[Record]:
    return sorted(records, key=lambda r: r.timestamp, reverse=True)


def merge_records(local: Sequence[Record], ledger: Sequence[Record]) -> list[Record]:
    """Merge local and ledger records; ledger wins on duplicates.

    Returns a new list sorted newest first. Ties keep ledger records ahead of
    local ones.
    """

    ledger_sigs = {r.signature for r in ledger if r.signature}
    ledger_ids = {r.id for r in ledger}
    extras = [
        r
        for r in local
        if not ((r.signature and r.signature in ledger_sigs) or r.id in ledger_ids)
    ]
    return sort_newest_first([*ledger, *extras])


def _cache_key(address: str) -> str:
    return f"{CACHE_KEY_PREFIX}{address}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TransactionStore:
    """Persisted transaction records plus cached ledger history.

    Parameters
    ----------
    ledger:
        Source of ledger history for ``get_all_transactions(address)``.
    backend:
        Durable key-value storage.
    cache_ttl_s:
        Age (seconds) after which a cached ledger fetch counts as absent.
    history_limit:
        ``limit`` passed to ``fetch_transactions_for_address``.
    clock / now:
        Epoch-seconds clock (ids, cache ages) and timestamp source (default
        record timestamps); injectable for tests.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        backend: PersistenceBackend,
        *,
        cache_ttl_s: float = DEFAULT_CACHE_TTL_S,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Callable[[], float] = time.time,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        if cache_ttl_s < 0:
            raise ValueError("cache_ttl_s must not be negative")
        if history_limit < 1:
            raise ValueError("history_limit must be a positive integer")
        self._ledger = ledger
        self._backend = backend
        self.cache_ttl_s = cache_ttl_s
        self.history_limit = history_limit
        self._clock = clock
        self._now = now
        # One in-flight ledger fetch per address; concurrent readers share it.
        self._inflight: dict[str, asyncio.Task[list[LedgerTransaction]]] = {}

    # ------------------------------------------------------------------
    # Local records
    # ------------------------------------------------------------------

    def _load(self) -> list[Record]:
        try:
            raw = self._backend.get(TRANSACTIONS_KEY)
        except PersistenceError:
            _logger.warning("store:load_failed; treating as empty", exc_info=True)
            return []
        if raw is None:
            return []
        try:
            return list(RECORD_LIST_ADAPTER.validate_json(raw))
        except ValidationError:
            _logger.warning(
                "store:corrupt_blob key=%s; treating as empty", TRANSACTIONS_KEY, exc_info=True
            )
            return []

    def _save(self, records: Sequence[Record]) -> None:
        payload = RECORD_LIST_ADAPTER.dump_json(list(records)).decode("utf-8")
        try:
            self._backend.set(TRANSACTIONS_KEY, payload)
        except PersistenceError:
            _logger.error("store:save_failed count=%d", len(records), exc_info=True)

    def add_transaction(
        self, fields: Mapping[str, Any] | None = None, /, **kwargs: Any
    ) -> LocalTransaction:
        """Store a new local record and return it with a fresh id.

        Accepts the record fields either as a mapping or as keyword arguments
        (``amount``, ``from_address``, ``to_address``, ``status``, ...).
        ``timestamp`` defaults to now. Raises ``pydantic.ValidationError`` for
        invalid field values.
        """

        data = {**(fields or {}), **kwargs}
        if "id" in data:
            raise ValueError("add_transaction assigns ids; do not pass 'id'")
        data.pop("source", None)
        data.setdefault("timestamp", self._now())
        record = LocalTransaction.model_validate({**data, "id": new_transaction_id(self._clock)})

        records = self._load()
        records.insert(0, record)
        self._save(records)
        _logger.info(
            "store:add id=%s status=%s amount=%s", record.id, record.status, record.amount
        )
        return record

    def update_transaction(self, tx_id: str, /, **changes: Any) -> Record | None:
        """Shallow-merge ``changes`` into the record ``tx_id`` and persist.

        Unknown ids are a no-op returning ``None``. Status may only move
        forward (pending → confirmed → finalized, or to failed from a
        non-terminal status) and a signature, once set, cannot change; both
        violations raise :class:`~campus_pay.errors.TransitionError`.
        """

        if "id" in changes or "source" in changes:
            raise ValueError("'id' and 'source' cannot be updated")
        records = self._load()
        for i, current in enumerate(records):
            if current.id == tx_id:
                break
        else:
            _logger.debug("store:update_missing id=%s", tx_id)
            return None

        if "status" in changes and changes["status"] is not None:
            new_status = TransactionStatus(changes["status"])
            if not is_allowed_transition(current.status, new_status):
                raise TransitionError(
                    f"transaction {tx_id}: cannot move from {current.status} to {new_status}"
                )
        if "signature" in changes and current.signature is not None:
            if changes["signature"] != current.signature:
                raise TransitionError(f"transaction {tx_id}: signature is already set")

        updated = type(current).model_validate({**current.model_dump(), **changes})
        records[i] = updated
        self._save(records)
        _logger.info("store:update id=%s fields=%s", tx_id, ",".join(sorted(changes)))
        return updated

    def get_transaction(self, tx_id: str) -> Record | None:
        return next((r for r in self._load() if r.id == tx_id), None)

    def get_transaction_by_signature(self, signature: str) -> Record | None:
        return next((r for r in self._load() if r.signature == signature), None)

    def get_transactions_for_address(self, address: str) -> list[Record]:
        """Local records where ``address`` is the sender or the recipient."""

        return [r for r in self._load() if address in (r.from_address, r.to_address)]

    def get_pending_transactions(self) -> list[Record]:
        return [r for r in self._load() if r.status == TransactionStatus.PENDING]

    def expire_stale_pending(self, max_age: timedelta) -> list[Record]:
        """Mark pending records older than ``max_age`` as failed.

        Returns the records as updated. Records whose status has already
        moved on are left alone.
        """

        if max_age < timedelta(0):
            raise ValueError("max_age must not be negative")
        cutoff = self._now() - max_age
        records = self._load()
        expired: list[Record] = []
        for i, record in enumerate(records):
            if record.status != TransactionStatus.PENDING or record.timestamp >= cutoff:
                continue
            if not is_allowed_transition(record.status, TransactionStatus.FAILED):
                continue
            records[i] = record.model_copy(update={"status": TransactionStatus.FAILED})
            expired.append(records[i])
        if expired:
            self._save(records)
            _logger.info(
                "store:expired_pending count=%d ids=%s",
                len(expired),
                ",".join(r.id for r in expired),
            )
        return expired

    def delete_transaction(self, tx_id: str) -> bool:
        records = self._load()
        kept = [r for r in records if r.id != tx_id]
        if len(kept) == len(records):
            return False
        self._save(kept)
        _logger.info("store:delete id=%s", tx_id)
        return True

    def clear_all(self) -> None:
        """Remove every local record. Cached ledger history is left to expire."""

        try:
            self._backend.delete(TRANSACTIONS_KEY)
        except PersistenceError:
            _logger.error("store:clear_failed", exc_info=True)
            return
        _logger.info("store:cleared")

    # ------------------------------------------------------------------
    # Ledger history and reconciliation
    # ------------------------------------------------------------------

    async def get_all_transactions(self, address: str | None = None) -> list[Record]:
        """Return local records, merged with ledger history when ``address`` is given."""

        local = sort_newest_first(self._load())
        if address is None:
            return local
        return await self._reconcile(address, local, force=False)

    async def refresh(self, address: str) -> list[Record]:
        """Drop the cache for ``address`` and re-fetch, ignoring the TTL."""

        self.invalidate(address)
        return await self._reconcile(address, sort_newest_first(self._load()), force=True)

    def invalidate(self, address: str) -> None:
        try:
            self._backend.delete(_cache_key(address))
        except PersistenceError:
            _logger.warning("store:cache_invalidate_failed address=%s", address, exc_info=True)

    async def _reconcile(self, address: str, local: list[Record], *, force: bool) -> list[Record]:
        try:
            ledger_records = await self._ledger_history(address, force=force)
        except Exception:  # noqa: BLE001 - any ledger failure degrades to local data
            _logger.warning(
                "store:ledger_fetch_failed address=%s; returning %d local record(s)",
                address,
                len(local),
                exc_info=True,
            )
            return local
        return merge_records(local, ledger_records)

    async def _ledger_history(self, address: str, *, force: bool) -> list[LedgerTransaction]:
        if not force:
            cached = self._read_cache(address)
            if cached is not None:
                return cached

        task = self._inflight.get(address)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._fetch_and_cache(address))
            self._inflight[address] = task
        else:
            _logger.debug("store:join_inflight address=%s", address)
        # Shield so that one cancelled reader does not cancel the shared fetch.
        return await asyncio.shield(task)

    async def _fetch_and_cache(self, address: str) -> list[LedgerTransaction]:
        try:
            _logger.debug("store:ledger_fetch address=%s limit=%d", address, self.history_limit)
            raw = await self._ledger.fetch_transactions_for_address(address, self.history_limit)
            records = [
                r if isinstance(r, LedgerTransaction) else LedgerTransaction.model_validate(r)
                for r in raw
            ]
            self._write_cache(address, records)
            return records
        finally:
            self._inflight.pop(address, None)

    def _read_cache(self, address: str) -> list[LedgerTransaction] | None:
        key = _cache_key(address)
        try:
            raw = self._backend.get(key)
        except PersistenceError:
            _logger.warning("store:cache_read_failed address=%s", address, exc_info=True)
            return None
        if raw is None:
            _logger.debug("store:cache_miss address=%s", address)
            return None
        try:
            entry = LedgerCacheEntry.model_validate_json(raw)
        except ValidationError:
            _logger.debug("store:cache_corrupt address=%s; refetching", address, exc_info=True)
            return None
        if entry.schema_version != CACHE_SCHEMA_VERSION or entry.address != address:
            return None
        age = self._clock() - entry.fetched_at
        if not 0 <= age < self.cache_ttl_s:
            _logger.debug("store:cache_stale address=%s age=%.1fs", address, age)
            return None
        _logger.debug("store:cache_hit address=%s count=%d", address, len(entry.records))
        return list(entry.records)

    def _write_cache(self, address: str, records: list[LedgerTransaction]) -> None:
        entry = LedgerCacheEntry(
            schema_version=CACHE_SCHEMA_VERSION,
            address=address,
            fetched_at=self._clock(),
            records=records,
        )
        try:
            self._backend.set(_cache_key(address), entry.model_dump_json())
        except PersistenceError:
            _logger.warning("store:cache_write_failed address=%s", address, exc_info=True)


__all__ = [
    "TransactionStore",
    "merge_records",
    "sort_newest_first",
    "new_transaction_id",
    "TRANSACTIONS_KEY",
    "CACHE_KEY_PREFIX",
    "CACHE_SCHEMA_VERSION",
]
