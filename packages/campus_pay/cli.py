# ruff: noqa: I001
"""CLI for the ``campus_pay`` package.

This module exposes callable command handlers (``cmd_build_uri``,
``cmd_export_csv``, ...) and a Typer-based console interface. Environment
variables (``CAMPUS_PAY_*`` and ``DATABASE_URL``) are loaded from a local
``.env`` using ``python-dotenv`` before delegating to command logic.

Records are stored with :class:`~campus_pay.backends.SqlBackend` when
``DATABASE_URL`` is set and with :class:`~campus_pay.backends.FileBackend`
under ``CAMPUS_PAY_DATA_DIR`` otherwise. No ledger transport is bundled, so
commands that touch ledger history see local records only.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .config import Settings
from .logging_setup import configure_logging

if TYPE_CHECKING:
    from .store import TransactionStore


# ---- Small module-level helpers used by CLI commands -------------------------


def _load_settings() -> Settings | None:
    try:
        return Settings.from_env()
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return None


@contextmanager
def _open_store(settings: Settings) -> Iterator[TransactionStore]:
    """Yield a ``TransactionStore`` on the configured backend."""

    from .backends import FileBackend, SqlBackend
    from .ledger import OfflineLedgerClient
    from .store import TransactionStore

    if settings.database_url:
        backend = SqlBackend(settings.database_url)
        try:
            yield TransactionStore(
                OfflineLedgerClient(),
                backend,
                cache_ttl_s=settings.cache_ttl_s,
                history_limit=settings.history_limit,
            )
        finally:
            backend.close()
    else:
        yield TransactionStore(
            OfflineLedgerClient(),
            FileBackend(settings.data_dir),
            cache_ttl_s=settings.cache_ttl_s,
            history_limit=settings.history_limit,
        )


# ---- Command handlers --------------------------------------------------------


def cmd_build_uri(
    recipient: str,
    amount: str,
    *,
    label: str | None = None,
    message: str | None = None,
    memo: str | None = None,
    category: str | None = None,
    with_reference: bool = True,
) -> int:
    """Validate a payment request and print its URI to stdout.

    Validation failures are written to stderr as ``Error: <code>: <message>``
    and return ``1``.
    """

    from .codec import PaymentRequestCodec, new_reference
    from .errors import INVALID_AMOUNT, PaymentValidationError
    from .models import PaymentRequest

    settings = _load_settings()
    if settings is None:
        return 1

    try:
        value = Decimal(amount.strip())
    except InvalidOperation:
        print(f"Error: {INVALID_AMOUNT}: not a decimal amount: {amount!r}", file=sys.stderr)
        return 1

    codec = PaymentRequestCodec(settings.uri_scheme, ceiling=settings.amount_ceiling)
    request = PaymentRequest(
        recipient=recipient,
        amount=value,
        label=label,
        message=message,
        memo=memo,
        reference=new_reference() if with_reference else None,
        category=category,
    )
    try:
        uri = codec.build_uri(request)
    except PaymentValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(uri)
    return 0


def cmd_parse_uri(uri: str) -> int:
    """Decode ``uri`` and print one ``field<TAB>value`` line per present field."""

    from .codec import PaymentRequestCodec, format_amount
    from .errors import PaymentValidationError, ProtocolError

    settings = _load_settings()
    if settings is None:
        return 1

    codec = PaymentRequestCodec(settings.uri_scheme, ceiling=settings.amount_ceiling)
    try:
        request = codec.parse_uri(uri)
    except ProtocolError as e:
        print(f"Error: malformed payment URI: {e}", file=sys.stderr)
        return 1
    except PaymentValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if request is None:
        print(f"Error: not a {settings.uri_scheme}: URI", file=sys.stderr)
        return 1

    print(f"recipient\t{request.recipient}")
    if request.amount is not None:
        print(f"amount\t{format_amount(request.amount)}")
    for name in ("label", "message", "memo", "reference"):
        value = getattr(request, name)
        if value is not None:
            print(f"{name}\t{value}")
    return 0


def cmd_new_reference() -> int:
    from .codec import new_reference

    print(new_reference())
    return 0


def cmd_list_transactions(status: str | None = None) -> int:
    """Print stored records newest first as tab-separated lines.

    Columns: id, timestamp, amount, status, type, other party, description.
    """

    import asyncio

    from .models import TransactionStatus

    settings = _load_settings()
    if settings is None:
        return 1

    wanted: TransactionStatus | None = None
    if status is not None:
        try:
            wanted = TransactionStatus(status.strip().lower())
        except ValueError:
            choices = ", ".join(s.value for s in TransactionStatus)
            print(f"Error: unknown status {status!r} (expected one of {choices})", file=sys.stderr)
            return 1

    try:
        with _open_store(settings) as store:
            records = asyncio.run(store.get_all_transactions())
    except Exception as e:
        print(f"Error: failed to open transaction store: {e}", file=sys.stderr)
        return 1

    for r in records:
        if wanted is not None and r.status != wanted:
            continue
        print(
            "\t".join(
                [
                    r.id,
                    r.timestamp.isoformat(timespec="seconds"),
                    format(r.amount, "f"),
                    r.status.value,
                    r.type.value,
                    r.other_party,
                    r.description,
                ]
            )
        )
    return 0


def cmd_export_csv(out_path: str) -> int:
    """Write every stored record to ``out_path`` in the interchange CSV format."""

    import asyncio

    from .ingest import export_transactions_to_csv

    settings = _load_settings()
    if settings is None:
        return 1

    try:
        with _open_store(settings) as store:
            records = asyncio.run(store.get_all_transactions())
    except Exception as e:
        print(f"Error: failed to open transaction store: {e}", file=sys.stderr)
        return 1

    try:
        Path(out_path).write_text(export_transactions_to_csv(records), encoding="utf-8")
    except OSError as e:
        print(f"Error: failed to write '{out_path}': {e}", file=sys.stderr)
        return 1
    print(f"Exported {len(records)} transaction(s) to {out_path}", file=sys.stderr)
    return 0


def cmd_import_csv(csv_path: str, *, owner_address: str = "") -> int:
    """Add every row of ``csv_path`` to the store as a new local record.

    Imported rows receive fresh ids; the ``ID`` column is not preserved so
    importing the same file twice yields two copies.
    """

    import csv

    from .ingest import import_transactions_from_csv

    settings = _load_settings()
    if settings is None:
        return 1

    try:
        with open(csv_path, encoding="utf-8", newline="") as f:
            records = import_transactions_from_csv(f.read(), owner_address=owner_address)
    except FileNotFoundError:
        print(f"Error: File not found: {csv_path}", file=sys.stderr)
        return 1
    except PermissionError:
        print(f"Error: Permission denied: {csv_path}", file=sys.stderr)
        return 1
    except csv.Error as e:
        print(f"Error: Failed to parse CSV: {e}", file=sys.stderr)
        return 1

    try:
        with _open_store(settings) as store:
            # Oldest first so the store's newest-first prepend keeps file order.
            for r in reversed(records):
                store.add_transaction(r.model_dump(exclude={"id", "source"}))
    except Exception as e:
        print(f"Error: import failed: {e}", file=sys.stderr)
        return 1
    print(f"Imported {len(records)} transaction(s) from {csv_path}", file=sys.stderr)
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Build and parse payment-request URIs and manage locally stored "
        "transactions. Loads CAMPUS_PAY_* settings from a local .env before running."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults). Typer will inspect these when used as default values below.
RECIPIENT_OPTION: OptionInfo = typer.Option(
    ..., "--recipient", help="Base58 address receiving the payment."
)
AMOUNT_OPTION: OptionInfo = typer.Option(
    ..., "--amount", help="Amount in SOL, fixed notation (e.g. 0.5)."
)
OUT_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--out",
    help="Destination CSV file.",
    dir_okay=False,
    file_okay=True,
)
CSV_PATH_OPTION: OptionInfo = typer.Option(
    ...,  # required
    "--csv-path",
    help="Path to a CSV file previously written by export-csv",
    dir_okay=False,
    file_okay=True,
    exists=False,  # allow non-existent here; the handler will report nice errors
    readable=True,
)


@app.command("build-uri")
def build_uri_cmd(
    recipient: Annotated[str, RECIPIENT_OPTION],
    amount: Annotated[str, AMOUNT_OPTION],
    *,
    label: str | None = typer.Option(None, help="Label shown by the paying wallet."),
    message: str | None = typer.Option(None, help="Message shown by the paying wallet."),
    memo: str | None = typer.Option(None, help="Memo embedded in the transaction."),
    category: str | None = typer.Option(
        None, help="Spending category (selects a category ceiling; not encoded)."
    ),
    reference: bool = typer.Option(
        True, "--reference/--no-reference", help="Attach a fresh reference address."
    ),
) -> None:
    """Print a payment-request URI."""

    raise typer.Exit(
        cmd_build_uri(
            recipient,
            amount,
            label=label,
            message=message,
            memo=memo,
            category=category,
            with_reference=reference,
        )
    )


@app.command("parse-uri")
def parse_uri_cmd(uri: str = typer.Argument(..., help="Payment-request URI to decode.")) -> None:
    """Decode a payment-request URI."""

    raise typer.Exit(cmd_parse_uri(uri))


@app.command("new-reference")
def new_reference_cmd() -> None:
    """Print a fresh single-use reference address."""

    raise typer.Exit(cmd_new_reference())


@app.command("list-transactions")
def list_transactions_cmd(
    status: str | None = typer.Option(
        None, help="Only show records with this status (pending, confirmed, finalized, failed)."
    ),
) -> None:
    """List stored transactions, newest first."""

    raise typer.Exit(cmd_list_transactions(status))


@app.command("export-csv")
def export_csv_cmd(out: Annotated[Path, OUT_PATH_OPTION]) -> None:
    """Export stored transactions to CSV."""

    raise typer.Exit(cmd_export_csv(str(out)))


@app.command("import-csv")
def import_csv_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    *,
    owner_address: str = typer.Option(
        "", help="Wallet address to fill in as our side of each imported transfer."
    ),
) -> None:
    """Import transactions from a CSV export."""

    raise typer.Exit(cmd_import_csv(str(csv_path), owner_address=owner_address))


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    # Running as a module: `python -m campus_pay.cli`
    app()
