"""Query execution package: live-transaction reads, listing and summaries."""

from finledger.queries.repository import TransactionRepository
from finledger.queries.executor import (
    CURRENCY_FORMATS,
    TransactionQueryExecutor,
    bucket_key,
    format_amount,
)

__all__ = [
    "CURRENCY_FORMATS",
    "TransactionQueryExecutor",
    "TransactionRepository",
    "bucket_key",
    "format_amount",
]
