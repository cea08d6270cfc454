"""CSV interchange for transaction records."""

from .csv_interchange import (
    CSV_HEADERS,
    export_transactions_to_csv,
    import_transactions_from_csv,
)

__all__ = ["CSV_HEADERS", "export_transactions_to_csv", "import_transactions_from_csv"]
