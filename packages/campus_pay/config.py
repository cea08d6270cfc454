"""Runtime settings resolved from the environment.

Entrypoints load ``.env`` (via ``python-dotenv``) before calling
:meth:`Settings.from_env`; library code receives a ``Settings`` instance or
explicit constructor arguments and never reads the environment itself.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path

DEFAULT_SCHEME = "pay"
DEFAULT_AMOUNT_CEILING = Decimal("50000000")
DEFAULT_CACHE_TTL_S = 60.0
DEFAULT_HISTORY_LIMIT = 50
DEFAULT_POLL_INTERVAL_MS = 2000
DEFAULT_REQUEST_TTL = timedelta(minutes=15)


def _env_str(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def _env_int(name: str, default: int | None) -> int | None:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation as e:
        raise ValueError(f"{name} must be a decimal, got {raw!r}") from e
    if not value.is_finite() or value <= 0:
        raise ValueError(f"{name} must be a positive decimal, got {raw!r}")
    return value


@dataclass(frozen=True, slots=True)
class Settings:
    """Resolved configuration for the codec, store, monitor and CLI."""

    uri_scheme: str = DEFAULT_SCHEME
    amount_ceiling: Decimal = DEFAULT_AMOUNT_CEILING
    cache_ttl_s: float = DEFAULT_CACHE_TTL_S
    history_limit: int = DEFAULT_HISTORY_LIMIT
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    max_polls: int | None = None
    data_dir: Path = Path(".campus_pay")
    database_url: str | None = None

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from ``CAMPUS_PAY_*`` variables and ``DATABASE_URL``.

        Invalid values raise ``ValueError`` naming the offending variable.
        """

        data_dir = _env_str("CAMPUS_PAY_DATA_DIR")
        return cls(
            uri_scheme=(_env_str("CAMPUS_PAY_URI_SCHEME") or DEFAULT_SCHEME).lower(),
            amount_ceiling=_env_decimal("CAMPUS_PAY_AMOUNT_CEILING", DEFAULT_AMOUNT_CEILING),
            cache_ttl_s=_env_float("CAMPUS_PAY_CACHE_TTL_S", DEFAULT_CACHE_TTL_S),
            history_limit=_env_int("CAMPUS_PAY_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT)
            or DEFAULT_HISTORY_LIMIT,
            poll_interval_ms=_env_int("CAMPUS_PAY_POLL_INTERVAL_MS", DEFAULT_POLL_INTERVAL_MS)
            or DEFAULT_POLL_INTERVAL_MS,
            max_polls=_env_int("CAMPUS_PAY_MAX_POLLS", None),
            data_dir=Path(data_dir).expanduser() if data_dir else Path.cwd() / ".campus_pay",
            database_url=_env_str("DATABASE_URL"),
        )


__all__ = [
    "Settings",
    "DEFAULT_SCHEME",
    "DEFAULT_AMOUNT_CEILING",
    "DEFAULT_CACHE_TTL_S",
    "DEFAULT_HISTORY_LIMIT",
    "DEFAULT_POLL_INTERVAL_MS",
    "DEFAULT_REQUEST_TTL",
]
