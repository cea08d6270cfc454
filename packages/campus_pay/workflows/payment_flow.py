"""Workflow orchestrators tying payment requests, the store and the monitor.

These functions compose the lower-level pieces behind a small importable API:
record what the user intends to pay, then mirror confirmation progress for
the submitted signature into that record.
"""

from __future__ import annotations

from collections.abc import Callable

from ..codec import PaymentRequestCodec
from ..config import DEFAULT_POLL_INTERVAL_MS, Settings
from ..errors import CampusPayError
from ..ledger import LedgerClient
from ..logging_setup import get_logger
from ..models import LocalTransaction, PaymentRequest, TransactionStatus, TransactionType
from ..monitor import MonitorOutcome, TransactionMonitor
from ..store import TransactionStore

_logger = get_logger("campus_pay.workflows.payment_flow")

_STATUS_FOR_UPDATE: dict[str, TransactionStatus] = {
    "confirmed": TransactionStatus.CONFIRMED,
    "finalized": TransactionStatus.FINALIZED,
    "failed": TransactionStatus.FAILED,
}


def monitor_for(ledger: LedgerClient, settings: Settings) -> TransactionMonitor:
    """Return a monitor bounded by ``settings.max_polls`` (unbounded when unset)."""

    return TransactionMonitor(ledger, max_polls=settings.max_polls)


def record_payment_intent(
    store: TransactionStore,
    request: PaymentRequest,
    from_address: str,
    *,
    codec: PaymentRequestCodec | None = None,
    description: str | None = None,
) -> LocalTransaction:
    """Validate ``request`` and store it as a pending outgoing record.

    Raises
    ------
    PaymentValidationError
        When the request fails validation; nothing is stored.
    """

    (codec or PaymentRequestCodec()).validate(request)
    assert request.amount is not None

    return store.add_transaction(
        amount=request.amount,
        from_address=from_address,
        to_address=request.recipient,
        status=TransactionStatus.PENDING,
        type=TransactionType.OUTGOING,
        category=request.category or "other",
        description=description if description is not None else (request.label or ""),
        memo=request.memo,
    )


def _resolve_interval(poll_interval_ms: int | None, settings: Settings | None) -> int:
    if poll_interval_ms is not None:
        return poll_interval_ms
    if settings is not None:
        return settings.poll_interval_ms
    return DEFAULT_POLL_INTERVAL_MS


def track_confirmation(
    store: TransactionStore,
    monitor: TransactionMonitor,
    record_id: str,
    signature: str,
    *,
    poll_interval_ms: int | None = None,
    settings: Settings | None = None,
    on_progress: Callable[[str], None] | None = None,
) -> None:
    """Start ``monitor`` on ``signature`` and mirror its updates into ``record_id``.

    Each update moves the record's status to ``confirmed``, ``finalized`` or
    ``failed``. The signature is written only with ``confirmed`` or
    ``finalized``; a failed submission leaves it unset. The poll interval is
    ``poll_interval_ms`` when given, else ``settings.poll_interval_ms``, else
    the package default. Must be called inside a running event loop; await
    ``monitor.wait()`` for the outcome.
    """

    if store.get_transaction(record_id) is None:
        raise KeyError(record_id)

    def _on_update(update: str) -> None:
        status = _STATUS_FOR_UPDATE.get(update)
        if status is None:
            return
        changes: dict[str, object] = {"status": status}
        if status != TransactionStatus.FAILED:
            changes["signature"] = signature
        try:
            store.update_transaction(record_id, **changes)
        except CampusPayError:
            # A concurrent writer may already have advanced the record.
            _logger.warning(
                "payment_flow:update_rejected id=%s status=%s", record_id, status, exc_info=True
            )
        if on_progress:
            try:
                on_progress(f"{record_id}: {update}")
            except Exception:
                _logger.exception("payment_flow:progress_callback_failed id=%s", record_id)

    monitor.start(signature, _on_update, _resolve_interval(poll_interval_ms, settings))


async def confirm_payment(
    store: TransactionStore,
    monitor: TransactionMonitor,
    record_id: str,
    signature: str,
    *,
    poll_interval_ms: int | None = None,
    settings: Settings | None = None,
) -> MonitorOutcome | None:
    """Track ``signature`` to completion and return the monitor outcome."""

    track_confirmation(
        store,
        monitor,
        record_id,
        signature,
        poll_interval_ms=poll_interval_ms,
        settings=settings,
    )
    try:
        return await monitor.wait()
    finally:
        monitor.stop()


__all__ = ["monitor_for", "record_payment_intent", "track_confirmation", "confirm_payment"]
