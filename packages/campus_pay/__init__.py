"""Public interface for the ``campus_pay`` package.

This module exposes the payment-request codec, the confirmation monitor, the
transaction store and their public models/types as the stable import surface.
There is no runtime logic here, only symbol re-exports.
"""

from .backends import FileBackend, InMemoryBackend, PersistenceBackend, SqlBackend
from .codec import (
    PaymentRequestCodec,
    is_valid_address,
    new_food_payment_request,
    new_parent_transfer,
    new_payment_request,
    new_reference,
    new_transport_payment_request,
)
from .config import Settings
from .errors import (
    CampusPayError,
    MonitorTimeoutError,
    NetworkError,
    PaymentValidationError,
    PersistenceError,
    ProtocolError,
    TransitionError,
)
from .history import (
    filter_records,
    sort_records,
    spending_by_category,
    total_received,
    total_spent,
)
from .ingest import export_transactions_to_csv, import_transactions_from_csv
from .ledger import LedgerClient, OfflineLedgerClient, SignatureStatus
from .models import (
    ConfirmationStep,
    LedgerTransaction,
    LocalTransaction,
    PaymentRequest,
    TransactionRecord,
    TransactionStatus,
    TransactionType,
)
from .monitor import MonitorOutcome, MonitorState, TransactionMonitor
from .store import TransactionStore

__all__ = [
    # Codec
    "PaymentRequestCodec",
    "new_payment_request",
    "new_food_payment_request",
    "new_transport_payment_request",
    "new_parent_transfer",
    "new_reference",
    "is_valid_address",
    # Monitor
    "TransactionMonitor",
    "MonitorState",
    "MonitorOutcome",
    # Store and persistence
    "TransactionStore",
    "PersistenceBackend",
    "InMemoryBackend",
    "FileBackend",
    "SqlBackend",
    "export_transactions_to_csv",
    "import_transactions_from_csv",
    # Ledger
    "LedgerClient",
    "OfflineLedgerClient",
    "SignatureStatus",
    # Models / types
    "PaymentRequest",
    "TransactionRecord",
    "LocalTransaction",
    "LedgerTransaction",
    "TransactionStatus",
    "TransactionType",
    "ConfirmationStep",
    # History views
    "filter_records",
    "sort_records",
    "total_spent",
    "total_received",
    "spending_by_category",
    # Configuration and errors
    "Settings",
    "CampusPayError",
    "PaymentValidationError",
    "TransitionError",
    "ProtocolError",
    "NetworkError",
    "PersistenceError",
    "MonitorTimeoutError",
]
