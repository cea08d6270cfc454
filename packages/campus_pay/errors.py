"""Exception types raised across ``campus_pay``.

Only validation failures (``PaymentValidationError`` and its subclass
``TransitionError``) and ``ProtocolError`` reach direct callers. Ledger and
storage failures are converted by the monitor and the store into terminal
states or degraded data and are logged rather than raised.
"""

from __future__ import annotations


class CampusPayError(Exception):
    """Base class for all package errors."""


class PaymentValidationError(CampusPayError, ValueError):
    """A payment request (or record update) failed validation.

    ``code`` is one of :data:`VALIDATION_CODES` and is stable enough to key
    user-facing messages on.
    """

    def __init__(self, code: str, message: str | None = None) -> None:
        self.code = code
        self.message = message or code.replace("_", " ")
        super().__init__(f"{self.code}: {self.message}")


AMOUNT_REQUIRED = "amount_required"
INVALID_AMOUNT = "invalid_amount"
AMOUNT_EXCEEDS_LIMIT = "amount_exceeds_limit"
INVALID_RECIPIENT = "invalid_recipient"
INVALID_TRANSITION = "invalid_transition"

VALIDATION_CODES: frozenset[str] = frozenset(
    {AMOUNT_REQUIRED, INVALID_AMOUNT, AMOUNT_EXCEEDS_LIMIT, INVALID_RECIPIENT}
)


class TransitionError(PaymentValidationError):
    """A record update would move status backwards or rewrite a signature."""

    def __init__(self, message: str) -> None:
        super().__init__(INVALID_TRANSITION, message)


class ProtocolError(CampusPayError, ValueError):
    """A URI uses our scheme but cannot be decoded."""


class NetworkError(CampusPayError):
    """A ledger query failed (transport error or malformed response)."""


class PersistenceError(CampusPayError):
    """A persistence backend could not read or write a key."""


class MonitorTimeoutError(CampusPayError, TimeoutError):
    """Confirmation monitoring ran out of its poll or wall-clock budget."""


__all__ = [
    "CampusPayError",
    "PaymentValidationError",
    "TransitionError",
    "ProtocolError",
    "NetworkError",
    "PersistenceError",
    "MonitorTimeoutError",
    "AMOUNT_REQUIRED",
    "INVALID_AMOUNT",
    "AMOUNT_EXCEEDS_LIMIT",
    "INVALID_RECIPIENT",
    "INVALID_TRANSITION",
    "VALIDATION_CODES",
]
