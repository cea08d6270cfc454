"""Payment-request URI codec.

URI shape::

    <scheme>:<recipient>?amount=<decimal>[&label=..][&message=..][&memo=..][&reference=..]

``build_uri`` validates a :class:`~campus_pay.models.PaymentRequest` and emits
the URI; ``parse_uri`` reverses it. ``parse_uri`` distinguishes three
outcomes:

- ``None``: the text does not use our scheme at all (someone else's URI).
- :class:`~campus_pay.errors.ProtocolError`: our scheme, but structurally
  malformed (bad percent-encoding, repeated keys, bad reference).
- :class:`~campus_pay.errors.PaymentValidationError`: our scheme and
  well-formed, but the amount or recipient are unacceptable.

Validation codes are checked in a fixed order: ``amount_required``,
``invalid_amount``, ``amount_exceeds_limit``, ``invalid_recipient``.
"""

from __future__ import annotations

import secrets
import string
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from urllib.parse import quote, unquote

import base58

from .config import DEFAULT_AMOUNT_CEILING, DEFAULT_REQUEST_TTL, DEFAULT_SCHEME
from .errors import (
    AMOUNT_EXCEEDS_LIMIT,
    AMOUNT_REQUIRED,
    INVALID_AMOUNT,
    INVALID_RECIPIENT,
    PaymentValidationError,
    ProtocolError,
)
from .logging_setup import get_logger
from .models import PaymentRequest

# Native token precision: 1 SOL = 10**9 lamports.
LEDGER_DECIMALS = 9
LAMPORTS_PER_SOL = 10**LEDGER_DECIMALS

# Public keys are 32 bytes; base58 of 32 bytes is at most 44 characters.
_ADDRESS_BYTES = 32
_MAX_ADDRESS_CHARS = 44

# Emission order for optional query fields.
_OPTIONAL_FIELDS: tuple[str, ...] = ("label", "message", "memo", "reference")

_logger = get_logger("campus_pay.codec")


# ----------------------------------------------------------------------------
# Address and amount helpers
# ----------------------------------------------------------------------------


def is_valid_address(text: str | None) -> bool:
    """Return whether ``text`` is syntactically a ledger address.

    Accepts non-empty base58 text that decodes to at most 32 bytes. Full
    on-curve checks belong to the ledger client, not to URI handling.
    """

    if not text or len(text) > _MAX_ADDRESS_CHARS:
        return False
    try:
        decoded = base58.b58decode(text)
    except ValueError:
        return False
    return 0 < len(decoded) <= _ADDRESS_BYTES


def new_reference() -> str:
    """Return a fresh single-use reference address (32 random bytes, base58)."""

    return base58.b58encode(secrets.token_bytes(_ADDRESS_BYTES)).decode("ascii")


def format_amount(amount: Decimal, decimals: int = LEDGER_DECIMALS) -> str:
    """Render ``amount`` in fixed notation with trailing zeros removed.

    Raises ``ValueError`` when the amount carries more than ``decimals``
    fractional digits; rounding would silently change what the payer sends.
    """

    if not amount.is_finite():
        raise ValueError(f"amount must be finite, got {amount}")
    exponent = amount.normalize().as_tuple().exponent
    if isinstance(exponent, int) and -exponent > decimals:
        raise ValueError(f"amount {amount} has more than {decimals} decimal places")
    text = format(amount.normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def sol_to_lamports(amount: Decimal) -> int:
    """Convert a SOL amount to integer lamports (must be exactly representable)."""

    lamports = amount * LAMPORTS_PER_SOL
    if lamports != lamports.to_integral_value():
        raise ValueError(f"amount {amount} is finer than one lamport")
    return int(lamports)


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / LAMPORTS_PER_SOL


def _fractional_digits(amount: Decimal) -> int:
    exponent = amount.normalize().as_tuple().exponent
    return -exponent if isinstance(exponent, int) and exponent < 0 else 0


# ----------------------------------------------------------------------------
# Codec
# ----------------------------------------------------------------------------


class PaymentRequestCodec:
    """Validated translation between ``PaymentRequest`` and URI text.

    Parameters
    ----------
    scheme:
        URI scheme to emit and accept (matched case-insensitively).
    ceiling:
        Global amount ceiling, a fat-finger guard rather than a business limit.
    category_ceilings:
        Optional per-category ceilings; a request whose ``category`` appears
        here is checked against that value instead of ``ceiling``.
    decimals:
        Maximum fractional digits (the ledger's base-unit precision).
    """

    def __init__(
        self,
        scheme: str = DEFAULT_SCHEME,
        *,
        ceiling: Decimal = DEFAULT_AMOUNT_CEILING,
        category_ceilings: Mapping[str, Decimal] | None = None,
        decimals: int = LEDGER_DECIMALS,
    ) -> None:
        if not scheme or ":" in scheme:
            raise ValueError(f"invalid URI scheme: {scheme!r}")
        self.scheme = scheme.lower()
        self.ceiling = ceiling
        self.category_ceilings = dict(category_ceilings or {})
        self.decimals = decimals

    # -- validation ---------------------------------------------------------

    def ceiling_for(self, category: str | None) -> Decimal:
        if category is not None and category in self.category_ceilings:
            return self.category_ceilings[category]
        return self.ceiling

    def validate(self, request: PaymentRequest) -> None:
        """Raise ``PaymentValidationError`` for the first failing rule."""

        amount = request.amount
        if amount is None:
            raise PaymentValidationError(AMOUNT_REQUIRED, "an amount is required")
        if not isinstance(amount, Decimal) or not amount.is_finite() or amount <= 0:
            raise PaymentValidationError(
                INVALID_AMOUNT, f"amount must be a positive decimal, got {amount!r}"
            )
        if _fractional_digits(amount) > self.decimals:
            raise PaymentValidationError(
                INVALID_AMOUNT, f"amount supports at most {self.decimals} decimal places"
            )
        limit = self.ceiling_for(request.category)
        if amount > limit:
            raise PaymentValidationError(
                AMOUNT_EXCEEDS_LIMIT, f"amount {amount} exceeds the limit of {limit}"
            )
        if not is_valid_address(request.recipient):
            raise PaymentValidationError(
                INVALID_RECIPIENT, f"not a valid address: {request.recipient!r}"
            )

    # -- encoding -----------------------------------------------------------

    def build_uri(self, request: PaymentRequest) -> str:
        """Return the URI for ``request``; raises ``PaymentValidationError``."""

        self.validate(request)
        assert request.amount is not None  # checked by validate()
        params = [f"amount={format_amount(request.amount, self.decimals)}"]
        for name in _OPTIONAL_FIELDS:
            value = getattr(request, name)
            if value is not None:
                params.append(f"{name}={quote(value, safe='')}")
        return f"{self.scheme}:{request.recipient}?{'&'.join(params)}"

    # -- decoding -----------------------------------------------------------

    def parse_uri(self, uri: str) -> PaymentRequest | None:
        """Decode ``uri``; ``None`` when it is not a URI in our scheme."""

        scheme, sep, rest = uri.strip().partition(":")
        if not sep or scheme.lower() != self.scheme:
            return None

        path, _, query = rest.partition("?")
        recipient = self._decode(path, "recipient")
        if not recipient:
            raise ProtocolError(f"{self.scheme} URI has no recipient: {uri!r}")

        fields = self._parse_query(query)
        reference = fields.get("reference")
        if reference is not None and not is_valid_address(reference):
            raise ProtocolError(f"invalid reference in payment request: {reference!r}")

        request = PaymentRequest(
            recipient=recipient,
            amount=self._parse_amount(fields.get("amount")),
            label=fields.get("label"),
            message=fields.get("message"),
            memo=fields.get("memo"),
            reference=reference,
        )
        self.validate(request)
        return request

    def _decode(self, raw: str, what: str) -> str:
        try:
            return unquote(raw, errors="strict")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"invalid percent-encoding in {what}") from e

    def _parse_query(self, query: str) -> dict[str, str]:
        fields: dict[str, str] = {}
        if not query:
            return fields
        for part in query.split("&"):
            if not part:
                continue
            key, sep, raw_value = part.partition("=")
            key = self._decode(key, "query key")
            if not sep:
                raise ProtocolError(f"query parameter without value: {key!r}")
            if key in fields:
                raise ProtocolError(f"repeated query parameter: {key!r}")
            if key not in ("amount", *_OPTIONAL_FIELDS):
                # Other wallets' extensions (e.g. spl-token) are not ours to judge.
                _logger.debug("parse_uri: ignoring unknown parameter %s", key)
                continue
            fields[key] = self._decode(raw_value, key)
        return fields

    @staticmethod
    def _parse_amount(raw: str | None) -> Decimal | None:
        if raw is None or not raw.strip():
            return None
        text = raw.strip()
        # Only plain fixed notation; reject exponents and signs up front.
        if not all(ch in string.digits or ch == "." for ch in text):
            raise PaymentValidationError(INVALID_AMOUNT, f"not a decimal amount: {raw!r}")
        try:
            return Decimal(text)
        except InvalidOperation as e:
            raise PaymentValidationError(INVALID_AMOUNT, f"not a decimal amount: {raw!r}") from e


def new_payment_request(
    recipient: str,
    amount: Decimal,
    label: str | None = None,
    *,
    message: str | None = None,
    memo: str | None = None,
    category: str | None = None,
    ttl: timedelta = DEFAULT_REQUEST_TTL,
    now: datetime | None = None,
) -> PaymentRequest:
    """Return a request carrying a freshly generated reference.

    The request is stamped with ``created_at`` (``now``, default current UTC
    time) and ``expires_at = created_at + ttl``.
    """

    created = now or datetime.now(UTC)
    return PaymentRequest(
        recipient=recipient,
        amount=amount,
        label=label,
        message=message,
        memo=memo,
        reference=new_reference(),
        category=category,
        created_at=created,
        expires_at=created + ttl,
    )


# ----------------------------------------------------------------------------
# Purpose-specific requests
# ----------------------------------------------------------------------------

_TRANSFER_LABELS: dict[str, str] = {
    "allowance": "CampusPay - Monthly Allowance",
    "emergency": "CampusPay - Emergency Fund",
    "tuition": "CampusPay - Tuition Payment",
    "other": "CampusPay - Transfer",
}


def new_food_payment_request(
    vendor_address: str, amount: Decimal, food_item: str, **kwargs
) -> PaymentRequest:
    return new_payment_request(
        vendor_address,
        amount,
        "CampusPay - Food Purchase",
        message=f"Payment for {food_item} - Campus Dining",
        category="food",
        **kwargs,
    )


def new_transport_payment_request(
    vendor_address: str, amount: Decimal, route: str, **kwargs
) -> PaymentRequest:
    return new_payment_request(
        vendor_address,
        amount,
        "CampusPay - Transport",
        message=f"Payment for {route} - Campus Transport",
        category="transport",
        **kwargs,
    )


def new_parent_transfer(
    student_address: str, amount: Decimal, purpose: str = "other", **kwargs
) -> PaymentRequest:
    """Request for a parent-to-student transfer.

    ``purpose`` is one of ``allowance``, ``emergency``, ``tuition`` or
    ``other``; it picks the label and becomes the request's category.
    Raises ``ValueError`` for any other purpose.
    """

    label = _TRANSFER_LABELS.get(purpose)
    if label is None:
        raise ValueError(f"unknown transfer purpose: {purpose!r}")
    return new_payment_request(
        student_address,
        amount,
        label,
        message=f"Transfer from parent - {purpose}",
        category=purpose,
        **kwargs,
    )


__all__ = [
    "PaymentRequestCodec",
    "new_payment_request",
    "new_food_payment_request",
    "new_transport_payment_request",
    "new_parent_transfer",
    "new_reference",
    "is_valid_address",
    "format_amount",
    "sol_to_lamports",
    "lamports_to_sol",
    "LEDGER_DECIMALS",
    "LAMPORTS_PER_SOL",
]
