"""Ledger client interface consumed by the monitor and the store.

The package ships no network transport; hosts supply an object satisfying
:class:`LedgerClient` (for example a thin wrapper around a Solana JSON-RPC
client). Both methods are coroutines so that monitor ticks and history
fetches suspend only at these calls.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

from .errors import NetworkError
from .models import LedgerTransaction


class ConfirmationLevel(StrEnum):
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"


# RPC commitment names that map onto our levels.
_RPC_LEVELS: dict[str, ConfirmationLevel] = {
    "processed": ConfirmationLevel.PROCESSING,
    "processing": ConfirmationLevel.PROCESSING,
    "confirmed": ConfirmationLevel.CONFIRMED,
    "finalized": ConfirmationLevel.FINALIZED,
}


@dataclass(frozen=True, slots=True)
class SignatureStatus:
    """Ledger-reported status of one submitted signature.

    ``confirmations`` is informational (blocks behind the tip) and never
    drives monitor transitions. ``err`` is the ledger's execution error, if
    the transaction landed but failed.
    """

    confirmation_status: ConfirmationLevel
    confirmations: int | None = None
    err: Any = None
    slot: int | None = None

    @classmethod
    def from_rpc(cls, item: Mapping[str, Any]) -> SignatureStatus:
        """Build from one ``getSignatureStatuses`` result item.

        Raises :class:`NetworkError` when the item is malformed so the monitor
        treats it like any other failed query.
        """

        raw_level = item.get("confirmationStatus")
        level = _RPC_LEVELS.get(str(raw_level).lower()) if raw_level is not None else None
        if level is None:
            raise NetworkError(f"unrecognized confirmationStatus: {raw_level!r}")
        confirmations = item.get("confirmations")
        slot = item.get("slot")
        try:
            return cls(
                confirmation_status=level,
                confirmations=int(confirmations) if confirmations is not None else None,
                err=item.get("err"),
                slot=int(slot) if slot is not None else None,
            )
        except (TypeError, ValueError) as e:
            raise NetworkError(f"malformed signature status: {dict(item)!r}") from e


class LedgerClient(Protocol):
    async def get_signature_status(self, signature: str) -> SignatureStatus | None:
        """Return the status for ``signature`` or ``None`` when not yet seen."""
        ...

    async def fetch_transactions_for_address(
        self, address: str, limit: int
    ) -> list[LedgerTransaction]:
        """Return up to ``limit`` parsed transactions involving ``address``."""
        ...


class OfflineLedgerClient:
    """A ledger client for contexts with no ledger connectivity (e.g. the CLI).

    Every call raises :class:`NetworkError`; the store degrades to local data
    and a monitor fails on its first tick.
    """

    async def get_signature_status(self, signature: str) -> SignatureStatus | None:
        raise NetworkError(f"no ledger connection (signature {signature})")

    async def fetch_transactions_for_address(
        self, address: str, limit: int
    ) -> list[LedgerTransaction]:
        raise NetworkError(f"no ledger connection (address {address})")


__all__ = [
    "ConfirmationLevel",
    "SignatureStatus",
    "LedgerClient",
    "OfflineLedgerClient",
]
