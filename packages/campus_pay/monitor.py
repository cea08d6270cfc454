"""Confirmation monitor for one submitted ledger transaction.

A :class:`TransactionMonitor` polls ``LedgerClient.get_signature_status`` on
an asyncio task and walks a fixed list of steps::

    submitted → processing → confirmed → finalized

State machine (``MonitorState``)::

    SUBMITTED → PROCESSING → CONFIRMED → FINALIZED
         \\___________\\___________\\______→ FAILED

Ticks are strictly sequential: the next query is issued only after the
previous one has been handled and the poll interval has elapsed. ``stop()``
cancels the task and bumps a generation counter, so a response that resolves
after ``stop()`` is discarded instead of mutating the steps.

By default polling continues until the ledger reports ``finalized``, reports
an execution error, or a query raises. ``max_polls`` and ``timeout_s`` add an
optional budget; exhausting it fails the monitor with outcome ``TIMEOUT`` and
a :class:`~campus_pay.errors.MonitorTimeoutError`.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from .config import DEFAULT_POLL_INTERVAL_MS
from .errors import MonitorTimeoutError, NetworkError
from .ledger import ConfirmationLevel, LedgerClient, SignatureStatus
from .logging_setup import get_logger
from .models import ConfirmationStep, StepStatus

_logger = get_logger("campus_pay.monitor")


_STEP_NAMES: tuple[tuple[str, str], ...] = (
    ("submitted", "Transaction Submitted"),
    ("processing", "Processing on Ledger"),
    ("confirmed", "Transaction Confirmed"),
    ("finalized", "Transaction Finalized"),
)


class MonitorState(StrEnum):
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"


class MonitorOutcome(StrEnum):
    FINALIZED = "finalized"
    NETWORK_ERROR = "network_error"
    LEDGER_ERROR = "ledger_error"
    TIMEOUT = "timeout"
    STOPPED = "stopped"


StatusCallback = Callable[[str], Any]
"""Receives ``"confirmed"``, ``"finalized"`` or ``"failed"``."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TransactionMonitor:
    """Track one signature until it is finalized or fails.

    Parameters
    ----------
    ledger:
        Ledger client used for status queries.
    max_polls:
        Optional cap on the number of status queries.
    timeout_s:
        Optional wall-clock budget measured from ``start()``.
    clock / now:
        Injectable monotonic clock (for the timeout) and timestamp source (for
        step timestamps).
    """

    def __init__(
        self,
        ledger: LedgerClient,
        *,
        max_polls: int | None = None,
        timeout_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_polls is not None and max_polls < 1:
            raise ValueError("max_polls must be a positive integer")
        if timeout_s is not None and timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        self._ledger = ledger
        self._max_polls = max_polls
        self._timeout_s = timeout_s
        self._clock = clock
        self._now = now

        self._steps: list[ConfirmationStep] = [
            ConfirmationStep(id=step_id, name=name) for step_id, name in _STEP_NAMES
        ]
        self._state = MonitorState.SUBMITTED
        self._history: list[MonitorState] = [MonitorState.SUBMITTED]
        self._task: asyncio.Task[None] | None = None
        self._generation = 0
        self._on_update: StatusCallback | None = None
        self._started_at = 0.0

        self.signature: str | None = None
        self.confirmations = 0
        self.polls = 0
        self.outcome: MonitorOutcome | None = None
        self.error: Exception | None = None
        self.ledger_err: Any = None

    # -- public surface -----------------------------------------------------

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def steps(self) -> tuple[ConfirmationStep, ...]:
        return tuple(self._steps)

    @property
    def history(self) -> tuple[MonitorState, ...]:
        return tuple(self._history)

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(
        self,
        signature: str,
        on_update: StatusCallback,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    ) -> None:
        """Begin polling ``signature``; must run inside an event loop."""

        if self._task is not None or self._state != MonitorState.SUBMITTED:
            raise RuntimeError("TransactionMonitor.start() may only be called once")
        if poll_interval_ms < 0:
            raise ValueError("poll_interval_ms must not be negative")
        loop = asyncio.get_running_loop()

        self.signature = signature
        self._on_update = on_update
        self._started_at = self._clock()
        self._mark("submitted", StepStatus.COMPLETED)
        self._mark("processing", StepStatus.CURRENT, stamp=False)
        self._enter(MonitorState.PROCESSING)

        self._generation += 1
        self._task = loop.create_task(
            self._run(self._generation, poll_interval_ms / 1000.0),
            name=f"monitor:{signature}",
        )
        _logger.info("monitor:start signature=%s interval_ms=%d", signature, poll_interval_ms)

    def stop(self) -> None:
        """Stop polling. Safe to call repeatedly or after termination."""

        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
            if self.outcome is None:
                self.outcome = MonitorOutcome.STOPPED
            _logger.info("monitor:stop signature=%s polls=%d", self.signature, self.polls)

    async def wait(self) -> MonitorOutcome | None:
        """Wait for the polling task to end and return the outcome."""

        if self._task is None:
            raise RuntimeError("TransactionMonitor has not been started")
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
        return self.outcome

    # -- polling loop -------------------------------------------------------

    async def _run(self, generation: int, interval_s: float) -> None:
        assert self.signature is not None
        while True:
            if self._budget_exhausted():
                self._fail(
                    MonitorOutcome.TIMEOUT,
                    MonitorTimeoutError(
                        f"signature {self.signature} not finalized after {self.polls} polls"
                    ),
                )
                return

            self.polls += 1
            try:
                status = await self._ledger.get_signature_status(self.signature)
            except asyncio.CancelledError:
                raise
            except Exception as e:  # noqa: BLE001 - every query failure is terminal
                if generation != self._generation:
                    return
                err = e if isinstance(e, NetworkError) else NetworkError(str(e) or type(e).__name__)
                if err is not e:
                    err.__cause__ = e
                self._fail(MonitorOutcome.NETWORK_ERROR, err)
                return

            if generation != self._generation:
                # stop() ran while the query was in flight
                return
            if self._apply(status):
                return
            await asyncio.sleep(interval_s)

    def _budget_exhausted(self) -> bool:
        if self._max_polls is not None and self.polls >= self._max_polls:
            return True
        if self._timeout_s is not None and self._clock() - self._started_at >= self._timeout_s:
            return True
        return False

    def _apply(self, status: SignatureStatus | None) -> bool:
        """Apply one ledger response; return ``True`` when monitoring is over."""

        if status is None:
            _logger.debug("monitor:poll signature=%s status=unseen", self.signature)
            return False
        if status.confirmations is not None:
            self.confirmations = status.confirmations
        _logger.debug(
            "monitor:poll signature=%s status=%s confirmations=%s",
            self.signature,
            status.confirmation_status,
            status.confirmations,
        )

        if status.err is not None:
            self.ledger_err = status.err
            self._fail(MonitorOutcome.LEDGER_ERROR, None)
            return True

        level = status.confirmation_status
        if level in (ConfirmationLevel.CONFIRMED, ConfirmationLevel.FINALIZED):
            if self._state == MonitorState.PROCESSING:
                self._mark("processing", StepStatus.COMPLETED)
                self._mark("confirmed", StepStatus.COMPLETED)
                self._mark("finalized", StepStatus.CURRENT, stamp=False)
                self._enter(MonitorState.CONFIRMED)
                self._notify("confirmed")
        if level == ConfirmationLevel.FINALIZED:
            self._mark("finalized", StepStatus.COMPLETED)
            self._enter(MonitorState.FINALIZED)
            self.outcome = MonitorOutcome.FINALIZED
            _logger.info(
                "monitor:finalized signature=%s polls=%d", self.signature, self.polls
            )
            self._notify("finalized")
            return True
        return False

    # -- step bookkeeping ---------------------------------------------------

    def _mark(self, step_id: str, status: StepStatus, *, stamp: bool = True) -> None:
        for i, step in enumerate(self._steps):
            if step.id == step_id:
                self._steps[i] = replace(
                    step, status=status, timestamp=self._now() if stamp else step.timestamp
                )
                return
        raise KeyError(step_id)

    def _enter(self, state: MonitorState) -> None:
        self._state = state
        self._history.append(state)

    def _fail(self, outcome: MonitorOutcome, error: Exception | None) -> None:
        for i, step in enumerate(self._steps):
            if step.status == StepStatus.CURRENT:
                self._steps[i] = replace(step, status=StepStatus.FAILED, timestamp=self._now())
                break
        self._enter(MonitorState.FAILED)
        self.outcome = outcome
        self.error = error
        _logger.warning(
            "monitor:failed signature=%s outcome=%s polls=%d error=%s",
            self.signature,
            outcome,
            self.polls,
            error or self.ledger_err,
        )
        self._notify("failed")

    def _notify(self, status: str) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(status)
        except Exception:
            # A broken subscriber must not stall the state machine.
            _logger.exception(
                "monitor:callback_failed signature=%s status=%s", self.signature, status
            )


__all__ = [
    "TransactionMonitor",
    "MonitorState",
    "MonitorOutcome",
    "StatusCallback",
]
