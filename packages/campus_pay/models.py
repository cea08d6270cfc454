"""Data models and type aliases for ``campus_pay``.

Transaction records are pydantic models so that persistence and the ledger
cache can round-trip them through JSON without losing decimal precision:
``model_dump(mode="json")`` renders ``Decimal`` fields as strings and
timestamps as ISO-8601.

Records come in two variants distinguished by an explicit ``source`` tag
rather than by which optional fields happen to be present:

- :class:`LocalTransaction` (``source="local"``): an intent recorded by this
  application, frequently before the ledger has assigned a signature.
- :class:`LedgerTransaction` (``source="ledger"``): a record parsed from
  ledger history; always carries a signature.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class TransactionStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"


class TransactionType(StrEnum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


_FORWARD_RANK: dict[TransactionStatus, int] = {
    TransactionStatus.PENDING: 0,
    TransactionStatus.CONFIRMED: 1,
    TransactionStatus.FINALIZED: 2,
}

TERMINAL_STATUSES: frozenset[TransactionStatus] = frozenset(
    {TransactionStatus.FINALIZED, TransactionStatus.FAILED}
)


def is_allowed_transition(current: TransactionStatus, new: TransactionStatus) -> bool:
    """Return whether a record may move from ``current`` to ``new``.

    Status only moves forward along pending → confirmed → finalized, or to
    ``failed`` from any non-terminal status. Re-asserting the current status is
    allowed and has no effect.
    """

    if current == new:
        return True
    if current in TERMINAL_STATUSES:
        return False
    if new == TransactionStatus.FAILED:
        return True
    return _FORWARD_RANK[new] > _FORWARD_RANK[current]


# ---------------------------------------------------------------------------
# Payment requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PaymentRequest:
    """A request for payment, encoded into a URI by ``PaymentRequestCodec``.

    Attributes
    ----------
    recipient:
        Ledger address that receives the funds.
    amount:
        Amount in the ledger's native unit. ``None`` only exists so that the
        codec can report ``amount_required`` rather than failing construction.
    label / message:
        Display strings shown by the paying wallet.
    memo:
        Text embedded in the ledger transaction itself.
    reference:
        Single-use address used to find the payer's transaction on-ledger.
        Produced by ``codec.new_reference()``; never reused across requests.
    category:
        Optional spending category. Not encoded in the URI; only selects a
        category-specific amount ceiling during validation.
    created_at / expires_at:
        Local validity window for a request this side issued. Not encoded in
        the URI, so a parsed request has neither. Excluded from equality.
    """

    recipient: str
    amount: Decimal | None
    label: str | None = None
    message: str | None = None
    memo: str | None = None
    reference: str | None = None
    category: str | None = None
    created_at: datetime | None = field(default=None, compare=False)
    expires_at: datetime | None = field(default=None, compare=False)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return True once ``now`` (default: current UTC time) reaches ``expires_at``.

        A request without ``expires_at`` never expires.
        """

        if self.expires_at is None:
            return False
        return (now or datetime.now(UTC)) >= self.expires_at


# ---------------------------------------------------------------------------
# Transaction records
# ---------------------------------------------------------------------------


class _TransactionBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    signature: str | None = None
    amount: Decimal
    from_address: str = ""
    to_address: str = ""
    timestamp: datetime
    status: TransactionStatus = TransactionStatus.PENDING
    type: TransactionType = TransactionType.OUTGOING
    category: str = "other"
    description: str = ""
    memo: str | None = None
    fees: Decimal | None = None
    confirmations: int | None = None
    other_party_name: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _timestamp_aware(cls, v: datetime) -> datetime:
        # Naive timestamps are taken as UTC so that sorting never mixes kinds.
        return v if v.tzinfo is not None else v.replace(tzinfo=UTC)

    @property
    def other_party(self) -> str:
        """The counterparty address from this wallet's point of view."""

        if self.type == TransactionType.INCOMING:
            return self.from_address
        return self.to_address


class LocalTransaction(_TransactionBase):
    """A locally originated transaction intent."""

    source: Literal["local"] = "local"


class LedgerTransaction(_TransactionBase):
    """A transaction parsed from ledger history."""

    source: Literal["ledger"] = "ledger"
    signature: str
    status: TransactionStatus = TransactionStatus.CONFIRMED


TransactionRecord = Annotated[
    LocalTransaction | LedgerTransaction, Field(discriminator="source")
]
"""Either record variant, discriminated by ``source``."""

RECORD_LIST_ADAPTER: TypeAdapter[list[LocalTransaction | LedgerTransaction]] = TypeAdapter(
    list[TransactionRecord]
)


# ---------------------------------------------------------------------------
# Confirmation steps
# ---------------------------------------------------------------------------


class StepStatus(StrEnum):
    PENDING = "pending"
    CURRENT = "current"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ConfirmationStep:
    """One row of the confirmation progress shown while a payment settles."""

    id: str
    name: str
    status: StepStatus = StepStatus.PENDING
    timestamp: datetime | None = None


# ---------------------------------------------------------------------------
# Ledger cache DTO
# ---------------------------------------------------------------------------


class LedgerCacheEntry(BaseModel):
    """Snapshot of ledger history for one address, as stored by the store."""

    model_config = ConfigDict(extra="forbid")

    schema_version: int
    address: str
    fetched_at: float
    records: list[LedgerTransaction]


__all__ = [
    "TransactionStatus",
    "TransactionType",
    "TERMINAL_STATUSES",
    "is_allowed_transition",
    "PaymentRequest",
    "LocalTransaction",
    "LedgerTransaction",
    "TransactionRecord",
    "RECORD_LIST_ADAPTER",
    "StepStatus",
    "ConfirmationStep",
    "LedgerCacheEntry",
]
